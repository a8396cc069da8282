import threading

import orjson as json
import pytest
from websockets.sync.server import serve

from rtm import log
from rtm.exception import TransportError
from rtm.messages import Hello, Message, Ping, Pong
from rtm.socket import RTMSocket, SocketConfig, SocketEvents, State
from rtm.transport import ConnectionDescriptor, WebSocketTransport


def handler(connection):
    connection.send(json.dumps({'type': 'hello'}).decode())
    for frame in connection:
        request = json.loads(frame)
        if request.get('type') == 'goodbye':
            connection.close()
            return
        connection.send(json.dumps({
            'reply_to': request['id'],
            'ok': True,
            'type': 'pong',
            'time': request.get('time'),
        }).decode())


@pytest.fixture(autouse=True)
def logger():
    log.configure()


@pytest.fixture
def server():
    with serve(handler, '127.0.0.1', 0) as server:
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        yield server
    thread.join(5)


@pytest.fixture
def url(server):
    host, port = server.socket.getsockname()[:2]
    return f'ws://{host}:{port}'


class Recorder:
    def __init__(self):
        self.closed = threading.Event()
        self.errors = []
        self.events = SocketEvents()
        self.events.connection_closed += self.closed.set
        self.events.error_receiving += self.errors.append
        self.events.error_handling += self.errors.append


@pytest.fixture
def recorder():
    return Recorder()


@pytest.mark.parametrize('descriptor,expected', [
    (ConnectionDescriptor('wss://example.com/ws'), 'wss://example.com/ws'),
    (
        ConnectionDescriptor('wss://example.com/ws?a=1', params={'b': '2 3'}),
        'wss://example.com/ws?a=1&b=2+3',
    ),
    (
        ConnectionDescriptor('wss://example.com/ws', svn_rev='r1', params={'b': '2'}),
        'wss://example.com/ws?svn_rev=r1&login_with_boot_data-0-1.5&on_login-0-1.5'
        '&connect-1-1.5&b=2',
    ),
])
def test_connect_url(descriptor, expected):
    assert descriptor.connect_url(now=1.5) == expected


def test_connect_url_timestamp(mocker):
    mocker.patch('time.time', return_value=100.25)
    url = ConnectionDescriptor('wss://example.com/ws', svn_rev='r1').connect_url()
    assert url.endswith('connect-1-100.25')


def test_transport_not_open():
    transport = WebSocketTransport('ws://127.0.0.1:1')
    assert transport.closed
    with pytest.raises(TransportError):
        transport.send('{}')
    with pytest.raises(TransportError):
        transport.start_receiving(print)
    transport.close()


class Target:
    def __init__(self):
        self.hello = threading.Event()

    def on_hello(self, message: Hello):
        self.hello.set()


@pytest.mark.slow
def test_round_trip(url, recorder):
    replies, received = [], threading.Event()
    target = Target()

    def on_reply(reply: Pong):
        replies.append(reply)
        received.set()

    descriptor = ConnectionDescriptor(url)
    with RTMSocket(descriptor, target, events=recorder.events) as socket:
        assert socket.connected
        assert target.hello.wait(5)
        request_id = socket.send(Ping(time=7), on_reply)
        assert received.wait(5)
    assert recorder.closed.wait(5)
    assert socket.state is State.CLOSED
    assert replies == [Pong(reply_to=request_id, type='pong', time=7)]
    assert recorder.errors == []


@pytest.mark.slow
def test_remote_close(url, recorder):
    socket = RTMSocket(
        ConnectionDescriptor(url),
        Target(),
        events=recorder.events,
        config=SocketConfig(request_timeout=None),
    )
    socket.send(Message(type='goodbye'))
    assert recorder.closed.wait(5)
    assert socket.state is State.CLOSED
    assert socket.transport.closed
    socket.close()
    assert recorder.errors == []


@pytest.mark.slow
def test_connect_refused(recorder):
    connected = []
    socket = RTMSocket(
        ConnectionDescriptor('ws://127.0.0.1:1'),
        events=recorder.events,
        on_connected=lambda: connected.append(True),
        config=SocketConfig(open_timeout=2),
    )
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], TransportError)
    assert socket.state is State.CLOSED
    assert not socket.connected
    assert connected == []
    socket.close()
    assert recorder.closed.is_set()
