"""Tests for aiokafka security kwargs."""

import ssl

from cascade.kafka.security import build_kafka_security_config


class TestBuildKafkaSecurityConfig:
    def test_plaintext_is_empty(self, kafka_config):
        assert build_kafka_security_config(kafka_config) == {}

    def test_ssl_gets_context(self, kafka_config):
        kafka_config.security_protocol = "SSL"

        cfg = build_kafka_security_config(kafka_config)

        assert cfg["security_protocol"] == "SSL"
        assert isinstance(cfg["ssl_context"], ssl.SSLContext)
        assert "sasl_mechanism" not in cfg

    def test_sasl_ssl_plain_credentials(self, kafka_config):
        kafka_config.security_protocol = "SASL_SSL"
        kafka_config.sasl_plain_username = "svc"
        kafka_config.sasl_plain_password = "secret"

        cfg = build_kafka_security_config(kafka_config)

        assert cfg["sasl_mechanism"] == "PLAIN"
        assert cfg["sasl_plain_username"] == "svc"
        assert cfg["sasl_plain_password"] == "secret"
        assert "ssl_context" in cfg

    def test_scram_without_ssl(self, kafka_config):
        kafka_config.security_protocol = "SASL_PLAINTEXT"
        kafka_config.sasl_mechanism = "SCRAM-SHA-512"

        cfg = build_kafka_security_config(kafka_config)

        assert cfg["sasl_mechanism"] == "SCRAM-SHA-512"
        assert "sasl_plain_username" in cfg
        assert "ssl_context" not in cfg

    def test_oauthbearer_has_no_password(self, kafka_config):
        kafka_config.security_protocol = "SASL_SSL"
        kafka_config.sasl_mechanism = "OAUTHBEARER"

        cfg = build_kafka_security_config(kafka_config)

        assert "sasl_plain_password" not in cfg
