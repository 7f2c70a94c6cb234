"""Tests for the outbound side of the transfer engine."""

import asyncio

import httpx
import pytest

from lanshare.config import CHUNK_SIZE
from lanshare.events import EventBus
from lanshare.security.crypto import generate_auth_key
from lanshare.transfer.manager import CANCELLED_MESSAGE, TransferEngine
from lanshare.transfer.models import (
    FileDescriptor,
    TransferRequest,
    TransferStatus,
    make_job_key,
    percentage_of,
)
from lanshare.transfer import service as transfer_service
from lanshare.transfer.receiver import FileReceiver, create_receiver_app


def descriptor(path) -> FileDescriptor:
    return FileDescriptor(name=path.name, path=str(path), size=path.stat().st_size)


def request_for(*paths, auth_key=None) -> TransferRequest:
    return TransferRequest(
        files=[descriptor(p) for p in paths],
        target_address="192.168.1.5",
        target_port=4000,
        auth_key=auth_key,
    )


def receiver_transport(settings_store) -> httpx.ASGITransport:
    app = create_receiver_app(FileReceiver(settings_store, EventBus()))
    return httpx.ASGITransport(app=app)


async def drain(subscription):
    subscription.close()
    return [event async for event in subscription]


class TestPeerChecks:
    """Tests for the auth-status and verify-auth client calls."""

    @pytest.mark.asyncio
    async def test_auth_required_true(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"requiresAuth": True}))
        engine = TransferEngine(EventBus(), transport=transport)
        assert await engine.check_auth_required("192.168.1.5", 4000) is True

    @pytest.mark.asyncio
    async def test_auth_required_false(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"requiresAuth": False}))
        engine = TransferEngine(EventBus(), transport=transport)
        assert await engine.check_auth_required("192.168.1.5", 4000) is False

    @pytest.mark.asyncio
    async def test_auth_required_hits_auth_status(self):
        seen = []

        def handler(request):
            seen.append((request.method, str(request.url)))
            return httpx.Response(200, json={"requiresAuth": False})

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        await engine.check_auth_required("192.168.1.5", 4000)
        assert seen == [("GET", "http://192.168.1.5:4000/auth-status")]

    @pytest.mark.asyncio
    async def test_unreachable_peer_is_not_protected(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        assert await engine.check_auth_required("192.168.1.5", 4000) is False

    @pytest.mark.asyncio
    async def test_timeout_is_not_protected(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        assert await engine.check_auth_required("192.168.1.5", 4000) is False

    @pytest.mark.asyncio
    async def test_garbage_reply_is_not_protected(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        engine = TransferEngine(EventBus(), transport=transport)
        assert await engine.check_auth_required("192.168.1.5", 4000) is False

    @pytest.mark.asyncio
    async def test_verify_password_sends_auth_key_not_password(self):
        expected = generate_auth_key("hunter2")

        def handler(request):
            assert b"hunter2" not in request.content
            if request.headers.get("X-Auth-Key") == expected:
                return httpx.Response(200, json={"valid": True})
            return httpx.Response(403, json={"valid": False})

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        assert await engine.verify_password_with_peer("192.168.1.5", 4000, "hunter2") is True
        assert await engine.verify_password_with_peer("192.168.1.5", 4000, "wrong") is False

    @pytest.mark.asyncio
    async def test_verify_password_network_error(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        assert await engine.verify_password_with_peer("192.168.1.5", 4000, "pw") is False

    @pytest.mark.asyncio
    async def test_verify_password_against_real_receiver(self, protected_store):
        engine = TransferEngine(EventBus(), transport=receiver_transport(protected_store))
        assert await engine.verify_password_with_peer("192.168.1.5", 4000, "hunter2") is True
        assert await engine.verify_password_with_peer("192.168.1.5", 4000, "hunter3") is False


class TestTransferFiles:
    """End-to-end sends into the real receiver app."""

    @pytest.mark.asyncio
    async def test_file_arrives_with_chunked_progress(self, settings_store, sample_file, download_dir):
        bus = EventBus()
        engine = TransferEngine(bus, transport=receiver_transport(settings_store))
        subscription = bus.subscribe()

        transfer_id = await engine.transfer_files(request_for(sample_file))
        await engine.wait(transfer_id)
        events = [e.data for e in await drain(subscription) if e.event == "transfer_progress"]

        size = sample_file.stat().st_size
        assert (download_dir / "sample.bin").read_bytes() == sample_file.read_bytes()

        statuses = [e["status"] for e in events]
        assert statuses[0] == "pending"
        assert statuses[1] == "transferring"
        assert statuses[-1] == "completed"
        assert "pending" not in statuses[1:]

        transferred = [e["bytes_transferred"] for e in events if e["bytes_transferred"]]
        assert transferred == sorted(transferred)
        assert transferred[0] == CHUNK_SIZE
        assert transferred[-1] == size
        for e in events[2:-1]:
            assert e["percentage"] == percentage_of(e["bytes_transferred"], size)

        job = engine.get_transfer_status(make_job_key(transfer_id, "sample.bin"))
        assert job.status == TransferStatus.COMPLETED
        assert job.percentage == 100
        assert job.bytes_transferred == size

    @pytest.mark.asyncio
    async def test_files_in_one_request_go_one_at_a_time(self, settings_store, tmp_path, download_dir):
        first = tmp_path / "first.txt"
        second = tmp_path / "second.txt"
        first.write_bytes(b"1" * 1000)
        second.write_bytes(b"2" * 1000)

        bus = EventBus()
        engine = TransferEngine(bus, transport=receiver_transport(settings_store))
        subscription = bus.subscribe()
        transfer_id = await engine.transfer_files(request_for(first, second))
        await engine.wait(transfer_id)
        events = [e.data for e in await drain(subscription) if e.event == "transfer_progress"]

        names = [e["file_name"] for e in events]
        last_first = max(i for i, name in enumerate(names) if name == "first.txt")
        first_second = min(i for i, name in enumerate(names) if name == "second.txt")
        assert events[last_first]["status"] == "completed"
        assert last_first < first_second
        assert (download_dir / "second.txt").read_bytes() == b"2" * 1000

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, settings_store, tmp_path, download_dir):
        paths = []
        for i in range(3):
            path = tmp_path / f"file{i}.txt"
            path.write_bytes(str(i).encode() * 5000)
            paths.append(path)

        engine = TransferEngine(EventBus(), transport=receiver_transport(settings_store))
        ids = [await engine.transfer_files(request_for(p)) for p in paths]
        await asyncio.gather(*(engine.wait(t) for t in ids))

        for transfer_id, path in zip(ids, paths):
            job = engine.get_transfer_status(make_job_key(transfer_id, path.name))
            assert job.status == TransferStatus.COMPLETED
            assert (download_dir / path.name).read_bytes() == path.read_bytes()

    @pytest.mark.asyncio
    async def test_auth_key_is_forwarded(self, protected_store, sample_file, download_dir):
        engine = TransferEngine(EventBus(), transport=receiver_transport(protected_store))
        transfer_id = await engine.transfer_files(
            request_for(sample_file, auth_key=generate_auth_key("hunter2"))
        )
        await engine.wait(transfer_id)

        job = engine.get_transfer_status(make_job_key(transfer_id, "sample.bin"))
        assert job.status == TransferStatus.COMPLETED
        assert (download_dir / "sample.bin").exists()

    @pytest.mark.asyncio
    async def test_rejection_marks_job_error(self, protected_store, sample_file, download_dir):
        engine = TransferEngine(EventBus(), transport=receiver_transport(protected_store))
        transfer_id = await engine.transfer_files(request_for(sample_file))
        await engine.wait(transfer_id)

        job = engine.get_transfer_status(make_job_key(transfer_id, "sample.bin"))
        assert job.status == TransferStatus.ERROR
        assert job.error == "Transfer failed with status 401"
        assert not (download_dir / "sample.bin").exists()

    @pytest.mark.asyncio
    async def test_unreadable_file_fails_alone(self, settings_store, tmp_path, download_dir):
        good = tmp_path / "good.txt"
        good.write_bytes(b"fine")
        missing = FileDescriptor(name="gone.txt", path=str(tmp_path / "gone.txt"), size=10)
        request = TransferRequest(
            files=[missing, descriptor(good)],
            target_address="192.168.1.5",
            target_port=4000,
        )

        engine = TransferEngine(EventBus(), transport=receiver_transport(settings_store))
        transfer_id = await engine.transfer_files(request)
        await engine.wait(transfer_id)

        failed = engine.get_transfer_status(make_job_key(transfer_id, "gone.txt"))
        sent = engine.get_transfer_status(make_job_key(transfer_id, "good.txt"))
        assert failed.status == TransferStatus.ERROR
        assert failed.error
        assert sent.status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unreachable_peer_marks_job_error(self, sample_file):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        engine = TransferEngine(EventBus(), transport=httpx.MockTransport(handler))
        transfer_id = await engine.transfer_files(request_for(sample_file))
        await engine.wait(transfer_id)

        job = engine.get_transfer_status(make_job_key(transfer_id, "sample.bin"))
        assert job.status == TransferStatus.ERROR
        assert "connection refused" in job.error


class SlowConsumer(httpx.AsyncBaseTransport):
    """Takes request bodies one chunk at a time, noting how far disk reads ran ahead."""

    def __init__(self, reads):
        self.reads = reads
        self.read_ahead = []

    async def handle_async_request(self, request):
        consumed = 0
        async for chunk in request.stream:
            consumed += 1
            self.read_ahead.append(len(self.reads) - consumed)
            await asyncio.sleep(0.002)
        return httpx.Response(200)


@pytest.mark.asyncio
async def test_disk_reads_wait_for_the_transport(sample_file, monkeypatch):
    reads = []
    read_chunks = transfer_service.iter_file_chunks

    async def counting_chunks(path, chunk_size):
        async for chunk in read_chunks(path, chunk_size):
            reads.append(len(chunk))
            yield chunk

    async def ignore_progress(sent):
        pass

    monkeypatch.setattr(transfer_service, "iter_file_chunks", counting_chunks)
    transport = SlowConsumer(reads)
    async with httpx.AsyncClient(transport=transport) as client:
        await transfer_service.send_file(
            client,
            "192.168.1.5",
            4000,
            descriptor(sample_file),
            progress_callback=ignore_progress,
            chunk_size=16 * 1024,
        )

    assert sum(reads) == sample_file.stat().st_size
    assert len(transport.read_ahead) == len(reads)
    assert max(transport.read_ahead) <= 1


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_mid_transfer(self, sample_file):
        bus = EventBus()
        engine = TransferEngine(
            bus,
            transport=httpx.MockTransport(lambda request: httpx.Response(200)),
            chunk_size=16 * 1024,
        )
        cancelled = []

        async def cancel_after_first_chunk(event_type, data):
            if event_type == "transfer_progress" and data["bytes_transferred"] and not cancelled:
                cancelled.append(data["job_key"])
                assert await engine.cancel_transfer(data["job_key"]) is True

        bus.on_event(cancel_after_first_chunk)
        subscription = bus.subscribe()
        transfer_id = await engine.transfer_files(request_for(sample_file))
        await engine.wait(transfer_id)
        events = [e.data for e in await drain(subscription) if e.event == "transfer_progress"]

        job_key = make_job_key(transfer_id, "sample.bin")
        assert cancelled == [job_key]
        assert engine.get_transfer_status(job_key) is None

        final = events[-1]
        assert final["status"] == "error"
        assert final["error"] == CANCELLED_MESSAGE
        assert [e["status"] for e in events].count("error") == 1
        assert final["bytes_transferred"] == 16 * 1024

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self):
        engine = TransferEngine(EventBus())
        assert await engine.cancel_transfer("transfer_0_nothing_x.txt") is False

    @pytest.mark.asyncio
    async def test_cancel_finished_job_just_forgets_it(self, settings_store, sample_file):
        bus = EventBus()
        engine = TransferEngine(bus, transport=receiver_transport(settings_store))
        transfer_id = await engine.transfer_files(request_for(sample_file))
        await engine.wait(transfer_id)
        job_key = make_job_key(transfer_id, "sample.bin")

        subscription = bus.subscribe()
        assert await engine.cancel_transfer(job_key) is True
        assert engine.get_transfer_status(job_key) is None
        assert await drain(subscription) == []
