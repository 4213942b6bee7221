"""Unit tests for serialized model invocation."""

from __future__ import annotations

import threading

import pytest

from faceid.inference import InferenceChannel, QueuePolicy

TIMEOUT = 5.0


class BlockingModel:
    """Model stub whose calls wait until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = []

    def __call__(self, value):
        self.calls.append(value)
        self.started.set()
        self.release.wait(TIMEOUT)
        return value * 2


@pytest.fixture
def model():
    return BlockingModel()


@pytest.fixture
def channel(model):
    """Channel around the blocking model, always released and closed."""
    channel = InferenceChannel(model, name="test")
    yield channel
    model.release.set()
    channel.close()


def test_call_returns_result():
    """call() blocks for the model output."""
    with InferenceChannel(lambda x: x + 1, name="adder") as channel:
        assert channel.call(41) == 42


def test_model_errors_surface_from_result():
    """Exceptions from the model are raised by Future.result()."""
    def broken(_):
        raise RuntimeError("inference failed")

    with InferenceChannel(broken) as channel:
        future = channel.submit(1)
        with pytest.raises(RuntimeError, match="inference failed"):
            future.result(TIMEOUT)


def test_drop_if_busy(channel, model):
    """A request arriving while the model is busy is dropped."""
    first = channel.submit(1, policy=QueuePolicy.DROP_IF_BUSY)
    assert model.started.wait(TIMEOUT)

    assert channel.busy
    assert channel.submit(2, policy=QueuePolicy.DROP_IF_BUSY) is None

    model.release.set()
    assert first.result(TIMEOUT) == 2
    assert model.calls == [1]


def test_queue_preserves_order(channel, model):
    """Queued requests run one at a time in submission order."""
    futures = [channel.submit(i) for i in range(4)]
    assert model.started.wait(TIMEOUT)

    model.release.set()

    assert [f.result(TIMEOUT) for f in futures] == [0, 2, 4, 6]
    assert model.calls == [0, 1, 2, 3]


def test_not_busy_after_completion(channel, model):
    """A finished call frees the channel for DROP_IF_BUSY."""
    model.release.set()
    channel.submit(1).result(TIMEOUT)

    assert not channel.busy
    assert channel.submit(2, policy=QueuePolicy.DROP_IF_BUSY).result(TIMEOUT) == 4


def test_cancel_pending(channel, model):
    """Queued calls are cancelled; the running one completes."""
    running = channel.submit(1)
    assert model.started.wait(TIMEOUT)
    queued = [channel.submit(i) for i in range(2, 5)]

    assert channel.cancel_pending() == 3
    assert all(f.cancelled() for f in queued)

    model.release.set()
    assert running.result(TIMEOUT) == 2
    assert model.calls == [1]


def test_closed_channel_rejects(model):
    """Submitting after close is an error; close is idempotent."""
    model.release.set()
    channel = InferenceChannel(model)
    channel.close()
    channel.close()

    with pytest.raises(RuntimeError):
        channel.submit(1)
