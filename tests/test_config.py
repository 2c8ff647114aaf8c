import pytest
import yaml

from faketp.config import ApiEndpoint, ConfigError, apply_env_overrides, load_config, parse_config


def base_raw():
    return {
        'address': '127.0.0.1',
        'insecure_port': 2121,
        'motd': 'hello',
        'help': 'no help',
        'fakedir_root': '/root',
        'fakedir_list': ['a', 'b'],
        'data_ports': {'begin': 50000, 'end': 50010},
        'user_auth': {'file': 'users.txt'},
    }


def write_config(tmp_path, raw):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(raw))
    return str(path)


def test_load_config(tmp_path):
    raw = base_raw()
    raw['permissive'] = True
    raw['strict_active_mode'] = True
    raw['pull'] = {'url': 'https://example.com/files', 'headers': [{'X-Token': 'abc'}, {'Accept': '*/*'}]}
    config = load_config(write_config(tmp_path, raw))

    assert config.address == '127.0.0.1'
    assert config.insecure_port == 2121
    assert config.data_port_begin == 50000
    assert config.data_port_end == 50010
    assert config.fakedir_list == ('a', 'b')
    assert config.permissive
    assert config.strict_active_mode
    assert not config.promiscuous_active_mode
    assert config.pull.configured
    assert config.pull.header_dict() == {'X-Token': 'abc', 'Accept': '*/*'}
    assert config.push == ApiEndpoint()
    assert config.auth_delay == 1.0
    assert config.failure_limit == 3
    assert config.idle_timeout is None


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / 'nope.yaml'))


def test_unparsable(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("data_ports: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_not_a_mapping():
    with pytest.raises(ConfigError):
        parse_config(['a', 'b'])


@pytest.mark.parametrize("data_ports", [
    None,
    {'begin': 50000},
    {'end': 50000},
    {'begin': 1023, 'end': 50000},
    {'begin': 50000, 'end': 65536},
    {'begin': 'lots', 'end': 50000},
    {'begin': 50001, 'end': 50000},
])
def test_bad_data_ports(data_ports):
    raw = base_raw()
    raw['data_ports'] = data_ports
    with pytest.raises(ConfigError):
        parse_config(raw)


def test_single_port_range():
    raw = base_raw()
    raw['data_ports'] = {'begin': 1024, 'end': 1024}
    config = parse_config(raw)
    assert config.data_port_begin == config.data_port_end == 1024


def test_missing_user_file():
    raw = base_raw()
    del raw['user_auth']
    with pytest.raises(ConfigError, match="file-based"):
        parse_config(raw)


def test_bad_fakedir_list():
    raw = base_raw()
    raw['fakedir_list'] = 'not a list'
    with pytest.raises(ConfigError):
        parse_config(raw)


def test_bad_listen_port():
    raw = base_raw()
    raw['insecure_port'] = 70000
    with pytest.raises(ConfigError):
        parse_config(raw)


def test_env_overrides():
    config = parse_config(base_raw())
    overridden = apply_env_overrides(config, {
        'FAKETP_ADDRESS': '0.0.0.0',
        'FAKETP_PORT': '2222',
        'FAKETP_USER_FILE': '/etc/faketp/users',
    })
    assert overridden.address == '0.0.0.0'
    assert overridden.insecure_port == 2222
    assert overridden.user_auth_file == '/etc/faketp/users'
    assert config.insecure_port == 2121


def test_env_overrides_absent():
    config = parse_config(base_raw())
    assert apply_env_overrides(config, {}) is config


@pytest.mark.parametrize("key", ['permissive', 'strict_active_mode', 'promiscuous_active_mode'])
@pytest.mark.parametrize("value", ["false", "no", "yes", 0, 1])
def test_flags_must_be_booleans(key, value):
    raw = base_raw()
    raw[key] = value
    with pytest.raises(ConfigError, match=key):
        parse_config(raw)


def test_quoted_false_in_yaml_rejected(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(base_raw()) + 'permissive: "false"\n')
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_flags_default_to_false():
    raw = base_raw()
    raw['permissive'] = None
    config = parse_config(raw)
    assert config.permissive is False
    assert config.strict_active_mode is False
