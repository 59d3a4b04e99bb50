import pytest

from filename_handshake import FilenameHandshake, artifact_filename


def test_last_prepare_wins_and_is_consumed_once():
    handshake = FilenameHandshake()
    handshake.prepare("a.mp4")
    handshake.prepare("b.mp4")

    assert handshake.consume_on_next_event() == "b.mp4"
    assert handshake.consume_on_next_event() is None


def test_consume_without_prepare_means_default_naming():
    assert FilenameHandshake().consume_on_next_event() is None


def test_discard_clears_pending():
    handshake = FilenameHandshake()
    handshake.prepare("row2_video1_1.mp4")
    handshake.discard()
    assert handshake.pending is None
    assert handshake.consume_on_next_event() is None


def test_empty_filename_rejected():
    with pytest.raises(ValueError):
        FilenameHandshake().prepare("")


def test_artifact_filename_format():
    assert artifact_filename(4, 2, 1700000000123) == "row4_video2_1700000000123.mp4"
