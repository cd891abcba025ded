"""scanimage 输出解析测试。"""
from docscan.devices.sane_parser import parse_device_list, parse_device_options

SCANIMAGE_L = """
device `epjitsu:libusb:001:004' is a FUJITSU ScanSnap S1500 scanner
device `genesys:libusb:002:003' is a Canon LiDE 110 flatbed scanner
device `v4l:/dev/video0' is a Noname Integrated Camera virtual device

No scanners were identified. If you were expecting something different,
"""

SCANIMAGE_A = """
All options specific to device `epjitsu:libusb:001:004':
  Standard:
    --source ADF Front|ADF Back|ADF Duplex [ADF Front]
        Selects the scan source (such as a document-feeder).
    --mode Lineart|Gray|Color [Lineart]
        Selects the scan mode (e.g., lineart, monochrome, or color).
    --resolution 50..600dpi (in steps of 1) [300]
        Sets the resolution of the scanned image.
"""


def test_parse_device_list():
    devices = parse_device_list(SCANIMAGE_L)
    assert [d.id for d in devices] == [
        "epjitsu:libusb:001:004", "genesys:libusb:002:003", "v4l:/dev/video0"]
    assert devices[0].vendor == "FUJITSU"
    assert devices[0].model == "ScanSnap S1500"
    assert devices[1].model == "LiDE 110 flatbed"


def test_parse_device_list_empty():
    assert parse_device_list("") == []


def test_parse_enum_options():
    caps = parse_device_options(
        "  --mode Color|Gray|Lineart\n"
        "  --source Flatbed|ADF|ADF Duplex\n"
        "  --resolution 75dpi|150dpi|300dpi\n"
    )
    assert caps.color_modes == ["Color", "Gray", "Lineart"]
    assert caps.sources == ["Flatbed", "ADF", "ADF Duplex"]
    assert caps.adf is True and caps.duplex is True
    assert caps.resolutions == [75, 150, 300]


def test_parse_real_option_dump():
    caps = parse_device_options(SCANIMAGE_A)
    assert caps.sources == ["ADF Front", "ADF Back", "ADF Duplex"]
    assert caps.color_modes == ["Lineart", "Gray", "Color"]
    # 方括号中的当前值不计入
    assert caps.resolutions == [50, 600]


def test_parse_bare_resolutions_sorted_and_deduplicated():
    caps = parse_device_options("    --resolution 600|300|150|300 [150]\n")
    assert caps.resolutions == [150, 300, 600]


def test_flatbed_only_device():
    caps = parse_device_options("    --source Flatbed|Transparency Adapter [Flatbed]\n")
    assert caps.adf is False
    assert caps.duplex is False


def test_missing_options_stay_unknown():
    caps = parse_device_options("    --brightness -100..100 [0]\n")
    assert caps.sources is None
    assert caps.color_modes is None
    assert caps.resolutions is None
