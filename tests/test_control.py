"""Tests for command execution, transcript, locking and best-effort helpers."""

import threading
import time

import pytest

from ftpcontrol.core import (CommandFailure, ControlLockTimeout, DataMode, DataType, FtpError,
                             ProtocolViolation, ResponseTimeout, SessionState)
from ftpcontrol.core.health import ActivityMonitor


class TestExecute:
    def test_connects_lazily(self, make_connection, transport):
        conn = make_connection()
        assert conn.execute("NOOP") is True
        assert transport.connect_count == 1
        assert conn.state is SessionState.READY
        assert transport.sent[-1] == "NOOP"
        assert conn.response.code == "200"

    def test_failure_returns_false(self, make_connection, transport):
        conn = make_connection()
        assert conn.execute("SITE CHMOD 777 x") is False
        assert conn.response_code == "502"
        assert conn.response_status is False

    def test_response_is_replaced(self, make_connection, transport):
        transport.replies["HELP"] = ["214-Commands:", " USER PASS", "214 Done"]
        conn = make_connection()
        conn.execute("HELP")
        assert conn.messages == ["214-Commands:", " USER PASS"]
        conn.execute("NOOP")
        assert conn.messages == []
        assert conn.response_message == "NOOP ok"

    def test_invalid_reply_class(self, make_connection, transport):
        transport.replies["NOOP"] = ["999 What"]
        conn = make_connection()
        conn.connect()
        with pytest.raises(ProtocolViolation):
            conn.execute("NOOP")

    def test_transcript(self, make_connection, trace_stream):
        conn = make_connection()
        conn.execute("NOOP")
        lines = trace_stream.getvalue().splitlines()
        assert "> 220 Ready" in lines
        assert "< NOOP" in lines
        assert "> 200 NOOP ok" in lines

    def test_log_message_transform(self, make_connection, trace_stream):
        conn = make_connection()
        conn.log_message = lambda line: "[ftp] " + line
        conn.execute("NOOP")
        assert "[ftp] < NOOP" in trace_stream.getvalue().splitlines()

    def test_response_listeners(self, make_connection, transport):
        transport.replies["STAT"] = ["211-Status:", " connected", "211 End"]
        conn = make_connection()
        conn.connect()
        seen = []
        conn.add_response_listener(lambda status, message: seen.append((status, message)))
        conn.execute("STAT")
        assert seen == [("INFO", "211-Status:"), ("INFO", " connected"), ("211", "End")]

    def test_fallback_encoding(self, make_connection, transport):
        conn = make_connection()
        conn.execute("CWD café")
        assert conn.utf8_enabled is False
        assert transport.writes[-1] == "CWD café\r\n".encode("latin-1")

    def test_utf8_after_opts(self, make_connection, transport):
        transport.replies["FEAT"] = ["211-Features:", " UTF8", "211 End"]
        transport.replies["OPTS UTF8 ON"] = ["200 Always in UTF8 mode"]
        conn = make_connection()
        conn.execute("CWD café")
        assert conn.utf8_enabled is True
        assert transport.writes[-1] == "CWD café\r\n".encode("utf-8")

    def test_opts_failure_is_tolerated(self, make_connection, transport):
        transport.replies["FEAT"] = ["211-Features:", " UTF8", "211 End"]
        transport.replies["OPTS"] = ["501 No"]
        conn = make_connection()
        conn.connect()
        assert conn.state is SessionState.READY
        assert conn.utf8_enabled is False


class TestPipeline:
    def test_batched_write(self, make_connection, transport):
        conn = make_connection(enable_pipelining=True)
        conn.connect()
        writes = len(transport.writes)
        responses = conn.execute_pipeline(["NOOP", "TYPE A", "XYZ"])
        assert len(transport.writes) == writes + 1
        assert [r.code for r in responses] == ["200", "200", "502"]
        assert conn.current_data_type is None

    def test_sequential_without_pipelining(self, make_connection, transport):
        conn = make_connection()
        conn.connect()
        writes = len(transport.writes)
        responses = conn.execute_pipeline(["NOOP", "XYZ"])
        assert len(transport.writes) == writes + 2
        assert [r.success for r in responses] == [True, False]


class TestLocking:
    def test_lock_timeout(self, make_connection):
        conn = make_connection()
        held = threading.Event()
        release = threading.Event()

        def hold():
            with conn.locked():
                held.set()
                release.wait(2)

        worker = threading.Thread(target=hold)
        worker.start()
        try:
            assert held.wait(2)
            with pytest.raises(ControlLockTimeout):
                with conn.locked(timeout=0.05):
                    pass
        finally:
            release.set()
            worker.join()

    def test_lock_is_reentrant(self, make_connection):
        conn = make_connection()
        with conn.locked(timeout=0.05):
            with conn.locked(timeout=0.05):
                assert conn.execute("NOOP")

    def test_lock_released_on_error(self, make_connection, transport):
        transport.replies["TYPE"] = ["504 Not supported"]
        conn = make_connection()
        with pytest.raises(CommandFailure):
            conn.set_data_type(DataType.ASCII)

        acquired = []

        def try_lock():
            try:
                with conn.locked(timeout=1):
                    acquired.append(True)
            except ControlLockTimeout:
                acquired.append(False)

        worker = threading.Thread(target=try_lock)
        worker.start()
        worker.join()
        assert acquired == [True]


class TestResponseTimeout:
    def test_timeout_closes_transport(self, make_connection, transport):
        transport.replies["NOOP"] = []
        conn = make_connection(response_read_timeout=0.05)
        conn.connect()
        transport.block_when_empty = True
        started = time.monotonic()
        with pytest.raises(ResponseTimeout):
            conn.execute("NOOP")
        assert time.monotonic() - started < 2
        assert transport.is_connected() is False
        assert conn.state is SessionState.DISCONNECTED
        conn.close()

    def test_is_a_timeout_error(self):
        assert issubclass(ResponseTimeout, TimeoutError)


class TestDataType:
    def test_same_type_sends_nothing(self, make_connection, transport):
        conn = make_connection()
        conn.set_data_type(DataType.BINARY)
        sent = len(transport.sent)
        conn.set_data_type(DataType.BINARY)
        assert len(transport.sent) == sent

    def test_new_type_sends_one_command(self, make_connection, transport):
        conn = make_connection()
        conn.set_data_type(DataType.BINARY)
        sent = len(transport.sent)
        conn.set_data_type(DataType.ASCII)
        assert transport.sent[sent:] == ["TYPE A"]
        assert conn.current_data_type is DataType.ASCII

    def test_failure_keeps_cached_type(self, make_connection, transport):
        conn = make_connection()
        conn.set_data_type(DataType.BINARY)
        transport.replies["TYPE"] = ["504 Not supported"]
        with pytest.raises(CommandFailure) as info:
            conn.set_data_type(DataType.ASCII)
        assert info.value.code == "504"
        assert conn.current_data_type is DataType.BINARY

    def test_block_mode_unsupported(self, make_connection, transport):
        conn = make_connection()
        conn.connect()
        sent = len(transport.sent)
        with pytest.raises(FtpError):
            conn.set_data_mode(DataMode.BLOCK)
        assert len(transport.sent) == sent

    def test_stream_mode(self, make_connection, transport):
        conn = make_connection()
        conn.set_data_mode(DataMode.STREAM)
        assert transport.sent[-1] == "MODE S"


class TestFileSize:
    def test_size(self, make_connection, transport):
        transport.replies["SIZE"] = ["213 1234"]
        conn = make_connection()
        assert conn.get_file_size("/pub/file.bin") == 1234
        assert transport.sent[-2:] == ["TYPE I", "SIZE /pub/file.bin"]

    def test_without_capability(self, make_connection, transport):
        transport.replies["FEAT"] = ["211-Features:", " MDTM", "211 End"]
        conn = make_connection()
        assert conn.get_file_size("/pub/file.bin") == 0
        assert not any(cmd.startswith("SIZE") for cmd in transport.sent)

    def test_missing_file(self, make_connection, transport):
        transport.replies["SIZE"] = ["550 No such file"]
        conn = make_connection()
        assert conn.get_file_size("/nope") == 0

    def test_unparseable_size(self, make_connection, transport):
        transport.replies["SIZE"] = ["213 unknown"]
        conn = make_connection()
        assert conn.get_file_size("/pub/file.bin") == 0

    def test_large_size(self, make_connection, transport):
        transport.replies["SIZE"] = ["213 98765432109876543210"]
        conn = make_connection()
        assert conn.get_file_size("/big") == 98765432109876543210

    def test_type_failure(self, make_connection, transport):
        transport.replies["TYPE"] = ["504 Not supported"]
        transport.replies["SIZE"] = ["213 10"]
        conn = make_connection()
        assert conn.get_file_size("/pub/file.bin") == 0


class TestDisconnect:
    def test_sends_quit(self, make_connection, transport):
        conn = make_connection()
        conn.connect()
        conn.disconnect()
        assert transport.sent[-1] == "QUIT"
        assert transport.is_connected() is False
        assert conn.state is SessionState.DISCONNECTED

    def test_quit_rejected(self, make_connection, transport):
        transport.replies["QUIT"] = ["500 No"]
        conn = make_connection()
        conn.connect()
        conn.disconnect()
        assert transport.is_connected() is False

    def test_quit_write_fails(self, make_connection, transport):
        conn = make_connection()
        conn.connect()
        transport.fail_writes = True
        conn.disconnect()
        assert transport.is_connected() is False

    def test_peer_already_gone(self, make_connection, transport):
        conn = make_connection()
        conn.connect()
        transport.peer_gone = True
        conn.disconnect()
        assert "QUIT" not in transport.sent
        assert transport.is_connected() is False

    def test_not_connected(self, make_connection, transport):
        conn = make_connection()
        conn.disconnect()
        assert transport.sent == []


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestHealthCheck:
    def test_reconnects_when_idle_peer_closed(self, make_connection, transport):
        clock = FakeClock()
        conn = make_connection()
        conn.activity = ActivityMonitor(clock)
        conn.connect()
        clock.now += 31
        transport.peer_gone = True
        assert conn.execute("NOOP") is True
        assert transport.connect_count == 2
        assert transport.sent[-1] == "NOOP"
        assert transport.sent.count("USER bob") == 2

    def test_idle_but_alive(self, make_connection, transport):
        clock = FakeClock()
        conn = make_connection()
        conn.activity = ActivityMonitor(clock)
        conn.connect()
        clock.now += 120
        conn.execute("NOOP")
        assert transport.connect_count == 1

    def test_recent_activity_skips_poll(self, make_connection, transport):
        clock = FakeClock()
        conn = make_connection()
        conn.activity = ActivityMonitor(clock)
        conn.connect()
        clock.now += 10
        transport.peer_gone = True
        conn.execute("NOOP")
        assert transport.connect_count == 1

    def test_activity_starts_lazily(self):
        clock = FakeClock()
        monitor = ActivityMonitor(clock)
        clock.now += 500
        assert monitor.last_activity == 1500.0
        assert monitor.needs_poll() is False
        clock.now += 31
        assert monitor.needs_poll() is True
        monitor.touch()
        assert monitor.needs_poll() is False

