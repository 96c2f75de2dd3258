"""
Unit Tests for Configuration Loading and Validation

Test Coverage:
    - Defaults and the destination property (IPv4, IPv6)
    - Layering: config file < CFI_* environment < command line
    - Option aliases and value coercion (booleans, lists, integers)
    - Config file errors
    - validate_configuration() rules
"""

import os
import tempfile
import unittest

from cloud_floating_ip.config import Config, load_config, read_config_file, validate_configuration
from cloud_floating_ip.exceptions import ConfigurationError


class ConfigFileTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def write(self, content, name='cloud-floating-ip.yaml'):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, 'w') as f:
            f.write(content)
        return path


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = Config()
        self.assertEqual(cfg.hoster, '')
        self.assertFalse(cfg.dry_run)
        self.assertEqual(cfg.route_tables, ())
        self.assertEqual(cfg.log_level, 'INFO')

    def test_destination_ipv4(self):
        self.assertEqual(Config(ip='10.0.0.1').destination, '10.0.0.1/32')
        self.assertEqual(Config(ip='10.0.0.1/32').destination, '10.0.0.1/32')

    def test_destination_ipv6(self):
        self.assertEqual(Config(ip='2001:DB8::1').destination, '2001:db8::1/128')

    def test_frozen(self):
        cfg = Config(ip='10.0.0.1')
        with self.assertRaises(AttributeError):
            cfg.ip = '10.0.0.2'


class TestLoadConfig(ConfigFileTestCase):

    def test_file_env_cli_precedence(self):
        path = self.write("ip: 10.0.0.1\nhoster: gce\nproject: from-file\nzone: europe-west1-b\n")
        environ = {'CFI_HOSTER': 'aws', 'CFI_PROJECT': 'from-env'}

        cfg = load_config({'project': 'from-cli'}, environ=environ, config_file=path)

        self.assertEqual(cfg.ip, '10.0.0.1')
        self.assertEqual(cfg.zone, 'europe-west1-b')
        self.assertEqual(cfg.hoster, 'aws')
        self.assertEqual(cfg.project, 'from-cli')

    def test_config_file_from_environment(self):
        path = self.write("ip: 10.0.0.7\n")
        cfg = load_config(environ={'CFI_CONFIG': path})
        self.assertEqual(cfg.ip, '10.0.0.7')

    def test_none_cli_values_do_not_override(self):
        cfg = load_config({'ip': None, 'region': 'eu-west-1'}, environ={'CFI_IP': '10.0.0.1'},
                          config_file=self.write(""))
        self.assertEqual(cfg.ip, '10.0.0.1')
        self.assertEqual(cfg.region, 'eu-west-1')

    def test_boolean_coercion(self):
        environ = {'CFI_DRY_RUN': 'true', 'CFI_IGNORE_MAIN_TABLE': 'no', 'CFI_QUIET': '1'}
        cfg = load_config(environ=environ, config_file=self.write(""))
        self.assertTrue(cfg.dry_run)
        self.assertFalse(cfg.ignore_main_table)
        self.assertTrue(cfg.quiet)

    def test_route_tables_from_each_layer(self):
        path = self.write("route-tables:\n  - rtb-1\n  - rtb-2\n")
        self.assertEqual(load_config(environ={}, config_file=path).route_tables, ('rtb-1', 'rtb-2'))

        cfg = load_config(environ={'CFI_TABLE': 'rtb-3, rtb-4'}, config_file=self.write(""))
        self.assertEqual(cfg.route_tables, ('rtb-3', 'rtb-4'))

        cfg = load_config({'table': ['rtb-5', 'rtb-6']}, environ={}, config_file=self.write(""))
        self.assertEqual(cfg.route_tables, ('rtb-5', 'rtb-6'))

    def test_aws_key_aliases(self):
        cfg = load_config({'aws-access-key-id': 'AKIA', 'aws-secret-key': 'secret'}, environ={},
                          config_file=self.write(""))
        self.assertEqual(cfg.access_key, 'AKIA')
        self.assertEqual(cfg.secret_key, 'secret')

    def test_underscore_keys_in_file(self):
        cfg = load_config(environ={}, config_file=self.write("target_ip: 10.0.0.9\n"))
        self.assertEqual(cfg.target_ip, '10.0.0.9')

    def test_plain_environment_variables(self):
        environ = {'GOOGLE_APPLICATION_CREDENTIALS': '/keys/sa.json', 'LOG_LEVEL': 'DEBUG'}
        cfg = load_config(environ=environ, config_file=self.write(""))
        self.assertEqual(cfg.gcp_credentials, '/keys/sa.json')
        self.assertEqual(cfg.log_level, 'DEBUG')

    def test_integer_coercion(self):
        cfg = load_config(environ={'CFI_LOG_BACKUP_COUNT': '3'}, config_file=self.write(""))
        self.assertEqual(cfg.log_backup_count, 3)

        with self.assertRaises(ConfigurationError):
            load_config(environ={'CFI_LOG_MAX_BYTES': 'lots'}, config_file=self.write(""))

    def test_unknown_keys_ignored(self):
        cfg = load_config(environ={}, config_file=self.write("ip: 10.0.0.1\nfoo: bar\n"))
        self.assertEqual(cfg.ip, '10.0.0.1')


class TestReadConfigFile(ConfigFileTestCase):

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            read_config_file(os.path.join(self.tmpdir.name, 'nope.yaml'))

    def test_invalid_yaml(self):
        with self.assertRaises(ConfigurationError):
            read_config_file(self.write("ip: [10.0.0.1\n"))

    def test_not_a_mapping(self):
        with self.assertRaises(ConfigurationError):
            read_config_file(self.write("- 10.0.0.1\n"))

    def test_empty_file(self):
        self.assertEqual(read_config_file(self.write("")), {})


class TestValidateConfiguration(ConfigFileTestCase):

    def test_valid(self):
        self.assertEqual(validate_configuration(Config(ip='10.0.0.1', hoster='aws')), [])

    def test_missing_ip(self):
        errors = validate_configuration(Config())
        self.assertTrue(any('No IP' in e for e in errors))

    def test_invalid_ip(self):
        errors = validate_configuration(Config(ip='10.0.0.300'))
        self.assertTrue(any('Invalid IP' in e for e in errors))

    def test_ip_range_rejected(self):
        errors = validate_configuration(Config(ip='10.0.0.0/24'))
        self.assertTrue(any('single address' in e for e in errors))

    def test_unsupported_hoster(self):
        errors = validate_configuration(Config(ip='10.0.0.1', hoster='azure'))
        self.assertTrue(any('azure' in e for e in errors))

    def test_invalid_target_ip(self):
        errors = validate_configuration(Config(ip='10.0.0.1', target_ip='eth0'))
        self.assertTrue(any('target IP' in e for e in errors))

    def test_partial_aws_keys(self):
        errors = validate_configuration(Config(ip='10.0.0.1', access_key='AKIA'))
        self.assertTrue(any('together' in e for e in errors))

    def test_unknown_log_level(self):
        errors = validate_configuration(Config(ip='10.0.0.1', log_level='LOUD'))
        self.assertTrue(any('log level' in e for e in errors))

    def test_missing_gcp_credentials_file(self):
        missing = os.path.join(self.tmpdir.name, 'sa.json')
        errors = validate_configuration(Config(ip='10.0.0.1', gcp_credentials=missing))
        self.assertTrue(any('not found' in e for e in errors))

        cfg = Config(ip='10.0.0.1', gcp_credentials=missing, use_workload_identity=True)
        self.assertEqual(validate_configuration(cfg), [])

    def test_existing_gcp_credentials_file(self):
        cfg = Config(ip='10.0.0.1', gcp_credentials=self.write("{}", 'sa.json'))
        self.assertEqual(validate_configuration(cfg), [])


if __name__ == '__main__':
    unittest.main()
