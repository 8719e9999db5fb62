from collections import UserDict

from voice_chat.audio.utils import describe_device, device_info_dict


def test_device_info_dict_from_plain_dict():
    data = {"name": "loopback", "index": 2}
    result = device_info_dict(data)
    assert result == data
    assert result is not data  # returns a copy


def test_device_info_dict_from_mapping():
    data = UserDict({"name": "usb mic", "index": 1})
    result = device_info_dict(data)
    assert result == {"name": "usb mic", "index": 1}


def test_device_info_dict_unknown_type_returns_empty():
    class SlotsOnly:
        __slots__ = ("name",)

        def __init__(self):
            self.name = "slots"

    assert device_info_dict(SlotsOnly()) == {}


def test_describe_device_uses_backend_name(fake_sd):
    assert describe_device(fake_sd, 0) == "Fake Mic (id 0)"


def test_describe_device_tolerates_query_failure(fake_sd):
    assert describe_device(fake_sd, 42) == "42"


def test_describe_device_without_explicit_device(fake_sd):
    assert describe_device(fake_sd, None) == "system default"
