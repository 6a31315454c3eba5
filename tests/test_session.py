"""Tests for CaptureSession — ingestion, live notices and export."""

import json
import struct

from scapy.all import IP, UDP, Ether, Raw

from albion_mail.protocol.classifier import FrameClassifier
from albion_mail.sniffer.capture import LinkType, RawDatagram
from albion_mail.sniffer.session import CaptureSession

MAC_DST = "02:00:00:00:00:01"
MAC_SRC = "02:00:00:00:00:02"


def _running_session(**kwargs) -> CaptureSession:
    session = CaptureSession(name="test", **kwargs)
    session.start()
    return session


def test_ingest_requires_start(mail_datagram):
    session = CaptureSession(name="test")
    assert session.ingest(mail_datagram) is False
    assert session.packet_count == 0
    assert len(session.datagrams) == 0


def test_end_to_end_regular_market_mail(mail_datagram):
    session = _running_session()
    assert session.ingest(mail_datagram) is True

    items = session.mail_items()
    assert len(items) == 1
    item = items[0]
    assert (item.amount, item.item, item.price, item.single) == (3, "T4_PLANKS", 250, 80)
    assert item.black_market is False

    assert session.render_csv() == ""

    mails = json.loads(session.render_json())
    assert len(mails) == 1
    assert mails[0]["id"] == "test_000000"
    assert mails[0]["content"] == "3|T4_PLANKS|250|80|200"
    assert mails[0]["attachments"][0]["item"] == "T4_PLANKS"
    assert mails[0]["timestamp"].startswith("2023-11-14T22:13:20")


def test_black_market_csv(mail_datagram, black_market_datagram):
    session = _running_session()
    session.ingest(mail_datagram)
    session.ingest(black_market_datagram)

    assert len(session.mail_items()) == 3
    assert [i.item for i in session.black_market_items()] == ["T4_BAG", "T5_MAIN_SWORD@2"]
    assert session.render_csv() == "100,5,T4_BAG\n900,2,T5_MAIN_SWORD@2"


def test_noise_rejected(noise_datagram):
    session = _running_session()
    assert session.ingest(noise_datagram) is False
    assert session.packet_count == 1
    assert session.mail_packet_count == 0
    assert session.mail_items() == []


def test_generic_datagrams_retained_but_skipped(generic_datagram, mail_datagram):
    session = _running_session()
    session.ingest(generic_datagram)
    session.ingest(mail_datagram)
    assert len(session.datagrams) == 2
    assert len(session.mail_items()) == 1
    assert len(session.mails()) == 1
    assert session.mails()[0].id == "test_000001"


def test_mail_callback(black_market_datagram, generic_datagram):
    notices = []
    session = _running_session()
    session.on_mail_detected(notices.append)

    session.ingest(generic_datagram)
    session.ingest(black_market_datagram)

    assert len(notices) == 1
    notice = notices[0]
    assert notice.item_count == 2
    assert notice.lines == [
        "[1] 5x T4_BAG @ BM - 100",
        "[2] 2x T5_MAIN_SWORD@2 @ BM - 900",
    ]
    assert notice.mail is not None
    assert notice.mail.subject == "No Subject"


def test_callback_error_does_not_stop_ingest(mail_datagram, black_market_datagram):
    def broken(notice):
        raise RuntimeError("ui gone")

    session = _running_session()
    session.on_mail_detected(broken)
    assert session.ingest(mail_datagram) is True
    assert session.ingest(black_market_datagram) is True
    assert len(session.datagrams) == 2


def test_stop_keeps_records(mail_datagram, black_market_datagram):
    session = _running_session()
    session.ingest(black_market_datagram)
    summary = session.stop()

    assert session.running is False
    assert session.ingest(mail_datagram) is False
    assert summary.item_count == 2
    assert summary.black_market_count == 2
    assert summary.mail_count == 1
    assert session.last_summary == summary
    assert session.render_csv() == "100,5,T4_BAG\n900,2,T5_MAIN_SWORD@2"


def test_max_datagrams_evicts_oldest(mail_datagram, black_market_datagram):
    session = _running_session(max_datagrams=1)
    session.ingest(mail_datagram)
    session.ingest(black_market_datagram)
    assert list(session.datagrams) == [black_market_datagram]
    assert session.mail_packet_count == 2


def test_custom_classifier(mail_datagram):
    session = _running_session(classifier=FrameClassifier(ports=[1], server_prefixes=["10.99."]))
    assert session.ingest(mail_datagram) is False


def test_export_is_recomputed(black_market_datagram):
    session = _running_session()
    session.ingest(black_market_datagram)
    first = session.render_csv()
    assert session.render_csv() == first
    assert session.render_json() == session.render_json()


def test_feed_ethernet_frame():
    frame = bytes(
        Ether(dst=MAC_DST, src=MAC_SRC)
        / IP(src="5.45.187.20", dst="192.168.1.100")
        / UDP(sport=5056, dport=50000)
        / Raw(load=b"\x00\x00" + b"4|T6_LEATHER|600|150" + b"\x00")
    )
    session = _running_session()
    assert session.feed_frame(frame + b"\xee" * 8, len(frame), LinkType.ETHERNET) is True
    assert session.render_csv() == "600,4,T6_LEATHER"


def test_feed_sll_frame():
    ip_part = bytes(
        IP(src="192.168.1.100", dst="54.93.199.4")
        / UDP(sport=50000, dport=5055)
        / Raw(load=b"1|T4_BAG|10|10")
    )
    frame = b"\x00" * 14 + struct.pack(">H", 0x0800) + ip_part
    session = _running_session()
    assert session.feed_frame(frame, len(frame), LinkType.LINUX_SLL) is True
    assert session.datagrams[0].dst_port == 5055


def test_save_load_round_trip(tmp_path, mail_datagram, black_market_datagram):
    session = _running_session()
    session.ingest(mail_datagram)
    session.ingest(black_market_datagram)
    path = session.save(tmp_path)
    assert path.exists()

    loaded = CaptureSession.load(path)
    assert loaded.name == "test"
    assert loaded.mail_packet_count == 2
    assert list(loaded.datagrams) == list(session.datagrams)
    assert loaded.render_csv() == session.render_csv()
    assert loaded.render_json() == session.render_json()


def test_summary_text(black_market_datagram):
    session = _running_session()
    session.ingest(black_market_datagram)
    text = session.summary()
    assert "Session: test" in text
    assert "2 black market" in text


def test_datagram_from_saved_dict():
    d = RawDatagram.from_dict({
        "timestamp": 1.5,
        "src": "5.45.187.1:5055",
        "dst": "10.0.0.2:40000",
        "payload_hex": "7c7c",
    })
    assert d.src_port == 5055
    assert d.payload == b"||"


def _mail_datagrams(n):
    return [
        RawDatagram(1700000000.0 + i, "5.45.187.20", "192.168.1.100", 5055, 54321,
                    f"{i + 1}|T4_BAG|100|50".encode())
        for i in range(n)
    ]


def test_mail_ids_unique_after_eviction():
    notices = []
    session = _running_session(max_datagrams=2)
    session.on_mail_detected(notices.append)
    for d in _mail_datagrams(4):
        session.ingest(d)

    live_ids = [n.mail.id for n in notices]
    assert live_ids == ["test_000000", "test_000001", "test_000002", "test_000003"]
    assert [m.id for m in session.mails()] == ["test_000002", "test_000003"]


def test_export_ids_stable_across_eviction():
    session = _running_session(max_datagrams=2)
    datagrams = _mail_datagrams(3)
    session.ingest(datagrams[0])
    session.ingest(datagrams[1])
    second_id = session.mails()[1].id
    session.ingest(datagrams[2])
    assert session.mails()[0].id == second_id


def test_save_load_keeps_mail_ids(tmp_path):
    session = _running_session(max_datagrams=2)
    for d in _mail_datagrams(3):
        session.ingest(d)
    loaded = CaptureSession.load(session.save(tmp_path))
    assert [m.id for m in loaded.mails()] == ["test_000001", "test_000002"]


def test_exports_do_not_recount_normalizer(mail_datagram):
    session = _running_session()
    session.ingest(mail_datagram)
    session.render_json()
    session.render_json()
    session.stop()
    assert session.normalizer.normalized == 1
    assert session.normalizer.dropped == 0
