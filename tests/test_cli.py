import pytest
from click.testing import CliRunner

import rtm
from rtm.cli import cli
from rtm.socket import SocketConfig
from rtm.transport import ConnectionDescriptor


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def send_main(mocker):
    return mocker.patch('rtm.tools.sender.main', autospec=True, return_value=True)


@pytest.fixture
def listen_main(mocker):
    return mocker.patch('rtm.tools.listener.main', autospec=True)


def test_version(runner):
    result = runner.invoke(cli, ['--version'])
    assert result.exit_code == 0
    assert result.output.strip() == rtm.__version__


def test_send(runner, send_main):
    result = runner.invoke(cli, [
        '--dispatch-workers', '2',
        '--request-timeout', '0',
        'send',
        'wss://example.com/ws',
        'typing',
        '--param', 'token=abc',
        '--field', 'channel="C1"',
        '--field', 'count=2',
        '--wait', '0.5',
    ])
    assert result.exit_code == 0, result.output
    send_main.assert_called_once_with(
        ConnectionDescriptor('wss://example.com/ws', params={'token': 'abc'}),
        SocketConfig(dispatch_workers=2, request_timeout=None),
        'typing',
        subtype=None,
        fields={'channel': 'C1', 'count': 2},
        wait=0.5,
    )


def test_send_without_reply(runner, send_main):
    send_main.return_value = False
    result = runner.invoke(cli, ['send', 'wss://example.com/ws', 'ping'])
    assert result.exit_code == 1


@pytest.mark.parametrize('args', [
    ['--dispatch-workers', '0', 'send', 'wss://example.com/ws', 'ping'],
    ['--request-timeout', '-1', 'send', 'wss://example.com/ws', 'ping'],
    ['send', 'wss://example.com/ws', 'ping', '--field', 'channel'],
    ['send', 'wss://example.com/ws', 'ping', '--field', 'channel=C1'],
    ['send', 'wss://example.com/ws', 'ping', '--wait', '0'],
])
def test_bad_option(runner, send_main, args):
    result = runner.invoke(cli, args)
    assert result.exit_code == 2
    send_main.assert_not_called()


def test_listen(runner, listen_main):
    result = runner.invoke(cli, [
        '--open-timeout', '3',
        'listen',
        'wss://example.com/ws',
        '--svn-rev', 'abc',
    ])
    assert result.exit_code == 0, result.output
    listen_main.assert_called_once_with(
        ConnectionDescriptor('wss://example.com/ws', svn_rev='abc'),
        SocketConfig(open_timeout=3),
    )


def test_listen_interrupted(runner, listen_main):
    listen_main.side_effect = KeyboardInterrupt
    result = runner.invoke(cli, ['listen', 'wss://example.com/ws'])
    assert result.exit_code == 0


def test_environment(runner, send_main):
    result = runner.invoke(
        cli,
        ['send', 'wss://example.com/ws', 'ping'],
        env={'RTM_SWEEP_INTERVAL': '0.25', 'RTM_SEND_WAIT': '2'},
    )
    assert result.exit_code == 0, result.output
    args, kwargs = send_main.call_args
    assert args[1].sweep_interval == 0.25
    assert kwargs['wait'] == 2


def test_config_file(runner, send_main, tmp_path):
    path = tmp_path / 'rtm.yaml'
    path.write_text('\n'.join([
        'log_level: debug',
        'request_timeout: 2',
        'send:',
        '  wait: 1.5',
        '  subtype: bot_message',
    ]))
    result = runner.invoke(cli, [
        '--config', str(path),
        '--request-timeout', '4',
        'send',
        'wss://example.com/ws',
        'message',
    ])
    assert result.exit_code == 0, result.output
    args, kwargs = send_main.call_args
    assert args[1].request_timeout == 4
    assert kwargs['wait'] == 1.5
    assert kwargs['subtype'] == 'bot_message'


def test_config_file_not_mapping(runner, send_main, tmp_path):
    path = tmp_path / 'rtm.yaml'
    path.write_text('- debug\n')
    result = runner.invoke(cli, ['--config', str(path), 'send', 'wss://example.com/ws', 'ping'])
    assert result.exit_code == 2
    assert 'mapping' in result.output
