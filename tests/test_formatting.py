from __future__ import annotations

from datetime import UTC, datetime

import pytest

from sensorrelay.formatting import (
    humidity_status,
    light_status,
    status_report,
    status_summary,
    temperature_status,
    thai_timestamp,
)
from sensorrelay.models.sensor import SensorReading


@pytest.mark.parametrize(
    ("light", "expected"),
    [
        (60000, "แดดจ้า ☀️"),
        (20000, "กลางแจ้ง มีเมฆ หรือแดดอ่อน 🌤"),
        (1000, "ออฟฟิศ หรือร้านค้า 💡"),
        (10, "มืดมากๆ 🕳️"),
    ],
)
def test_light_status_bands(light: float, expected: str) -> None:
    assert light_status(light) == expected


@pytest.mark.parametrize(
    ("temperature", "expected"),
    [
        (36, "อุณหภูมิร้อนมาก ⚠️"),
        (30, "อุณหภูมิร้อน 🔥"),
        (25, "อุณหภูมิอุ่นๆ 🌞"),
        (19.9, "อุณหภูมิเย็น ❄️"),
    ],
)
def test_temperature_status_bands(temperature: float, expected: str) -> None:
    assert temperature_status(temperature) == expected


@pytest.mark.parametrize(
    ("humidity", "expected"),
    [
        (90, "ชื้นมาก อากาศอึดอัด 🌧️"),
        (55, "อากาศสบาย ✅"),
        (40, "ค่อนข้างแห้ง 💨"),
        (5, "อากาศแห้งมาก 🏜️"),
    ],
)
def test_humidity_status_bands(humidity: float, expected: str) -> None:
    assert humidity_status(humidity) == expected


def test_status_summary_prints_whole_readings_without_decimals() -> None:
    summary = status_summary(SensorReading(light=20000, temperature=32, humidity=55.5))

    assert summary.splitlines() == [
        "📊 สภาพอากาศล่าสุด :",
        "- ค่าแสง: 20000 lux (กลางแจ้ง มีเมฆ หรือแดดอ่อน 🌤)",
        "- อุณหภูมิ: 32 °C (อุณหภูมิร้อน 🔥)",
        "- ความชื้น: 55.5 % (อากาศสบาย ✅)",
    ]


def test_thai_timestamp_uses_local_time_and_buddhist_era() -> None:
    now = datetime(2025, 5, 14, 3, 0, tzinfo=UTC)

    assert thai_timestamp(now) == "วันพุธ ที่ 14 พฤษภาคม พ.ศ.2568 เวลา 10:00 น."


def test_status_report_layout() -> None:
    now = datetime(2025, 12, 31, 17, 30, tzinfo=UTC)
    report = status_report(SensorReading(light=5, temperature=22, humidity=65), "อากาศเย็นสบาย", now)

    lines = report.splitlines()
    assert lines[0] == "📡 รายงานสภาพอากาศอัตโนมัติ :"
    assert lines[1] == "🕒 เวลา : วันพฤหัสบดี ที่ 1 มกราคม พ.ศ.2569 เวลา 00:30 น."
    assert lines[-1] == "🤖 AI : อากาศเย็นสบาย"
