"""scanimage 文本输出解析 (-L 设备列表 / -A 选项清单)。"""
from __future__ import annotations
import re
from docscan.common.schemas import Device, DeviceCapabilities

_DEVICE_LINE = re.compile(r"^device `(.+?)' is a (.+)$")
_ENUM_VALUES = re.compile(r"([\w\s/\-]+(?:\|[\w\s/\-]+)+)")
_NUMBERS = re.compile(r"(?<!\d)(\d{2,4})(?!\d)")
_OPTION_PREFIX = re.compile(r"^--[a-z\-]+\s+", re.IGNORECASE)
_SINGLE_VALUE = re.compile(r"--[a-z\-]+\s+([^\[|]+?)\s*(?:\[|$)", re.IGNORECASE)


def parse_device_list(text: str) -> list[Device]:
    """
    解析 `scanimage -L`:
        device `epjitsu:libusb:001:004' is a FUJITSU ScanSnap S1500 scanner
    """
    devices: list[Device] = []
    for line in text.splitlines():
        m = _DEVICE_LINE.match(line.strip())
        if not m:
            continue
        desc = re.sub(r"\s+scanner.*$", "", m.group(2), flags=re.IGNORECASE)
        parts = desc.split()
        devices.append(Device(
            id=m.group(1),
            vendor=parts[0] if parts else None,
            model=" ".join(parts[1:]) or None,
        ))
    return devices


def parse_device_options(text: str) -> DeviceCapabilities:
    """解析 `scanimage -A -d <id>` 中的 --source / --mode / --resolution 行。"""
    caps = DeviceCapabilities()
    for line in text.splitlines():
        if re.search(r"--source\b", line):
            values = _enum_values(line)
            caps.sources = values
            caps.adf = any(re.search("adf|feeder", v, re.IGNORECASE) for v in values)
            caps.duplex = any(re.search("duplex", v, re.IGNORECASE) for v in values)
        elif re.search(r"--mode\b", line):
            caps.color_modes = _enum_values(line)
        elif re.search(r"--resolution\b", line):
            # 方括号内是当前值，不计入候选
            head = line.split("[", 1)[0].split("--resolution", 1)[-1]
            nums = [int(n) for n in _NUMBERS.findall(head)]
            if nums:
                caps.resolutions = sorted(set(nums))
    return caps


def _enum_values(line: str) -> list[str]:
    m = _ENUM_VALUES.search(line)
    if not m:
        # 只有一个可选值: --source Flatbed [Flatbed]
        single = _SINGLE_VALUE.search(line)
        return [single.group(1)] if single else []
    values = [_OPTION_PREFIX.sub("", v.strip()) for v in m.group(1).split("|")]
    return [v for v in values if v]
