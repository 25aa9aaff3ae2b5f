"""Human-readable status strings for chat replies and reports."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from sensorrelay.models.sensor import SensorReading

_THAI_DAYS = ("จันทร์", "อังคาร", "พุธ", "พฤหัสบดี", "ศุกร์", "เสาร์", "อาทิตย์")
_THAI_MONTHS = (
    "มกราคม",
    "กุมภาพันธ์",
    "มีนาคม",
    "เมษายน",
    "พฤษภาคม",
    "มิถุนายน",
    "กรกฎาคม",
    "สิงหาคม",
    "กันยายน",
    "ตุลาคม",
    "พฤศจิกายน",
    "ธันวาคม",
)
_BUDDHIST_ERA_OFFSET = 543


def _fmt(value: float) -> str:
    """Drop a trailing ``.0`` so whole readings print like the device sends them."""
    return str(int(value)) if float(value).is_integer() else str(value)


def light_status(light: float) -> str:
    if light > 50000:
        return "แดดจ้า ☀️"
    if light > 10000:
        return "กลางแจ้ง มีเมฆ หรือแดดอ่อน 🌤"
    if light > 5000:
        return "ฟ้าครึ้ม 🌥"
    if light > 1000:
        return "ห้องที่มีแสงธรรมชาติ 🌈"
    if light > 500:
        return "ออฟฟิศ หรือร้านค้า 💡"
    if light > 100:
        return "ห้องนั่งเล่น ไฟบ้าน 🌙"
    if light > 10:
        return "ไฟสลัว 🌑"
    return "มืดมากๆ 🕳️"


def temperature_status(temperature: float) -> str:
    if temperature > 35:
        return "อุณหภูมิร้อนมาก ⚠️"
    if temperature >= 30:
        return "อุณหภูมิร้อน 🔥"
    if temperature >= 25:
        return "อุณหภูมิอุ่นๆ 🌞"
    if temperature >= 20:
        return "อุณหภูมิพอดี 🌤"
    return "อุณหภูมิเย็น ❄️"


def humidity_status(humidity: float) -> str:
    if humidity > 85:
        return "ชื้นมาก อากาศอึดอัด 🌧️"
    if humidity > 70:
        return "อากาศชื้น เหนียวตัว 💦"
    if humidity > 60:
        return "เริ่มชื้น 🌫️"
    if humidity > 40:
        return "อากาศสบาย ✅"
    if humidity > 30:
        return "ค่อนข้างแห้ง 💨"
    if humidity > 20:
        return "แห้งมาก 🥵"
    return "อากาศแห้งมาก 🏜️"


def reading_lines(reading: SensorReading) -> list[str]:
    return [
        f"- ค่าแสง: {_fmt(reading.light)} lux ({light_status(reading.light)})",
        f"- อุณหภูมิ: {_fmt(reading.temperature)} °C ({temperature_status(reading.temperature)})",
        f"- ความชื้น: {_fmt(reading.humidity)} % ({humidity_status(reading.humidity)})",
    ]


def status_summary(reading: SensorReading) -> str:
    """Direct reply for messages the model is not asked about."""
    return "\n".join(["📊 สภาพอากาศล่าสุด :", *reading_lines(reading)])


def thai_timestamp(now: datetime, time_zone: str = "Asia/Bangkok") -> str:
    """``วันศุกร์ ที่ 16 ตุลาคม พ.ศ.2569 เวลา 14:05 น.``"""
    local = now.astimezone(ZoneInfo(time_zone))
    return (
        f"วัน{_THAI_DAYS[local.weekday()]} ที่ {local.day} {_THAI_MONTHS[local.month - 1]} "
        f"พ.ศ.{local.year + _BUDDHIST_ERA_OFFSET} เวลา {local:%H:%M} น."
    )


def status_report(reading: SensorReading, analysis: str, now: datetime, time_zone: str = "Asia/Bangkok") -> str:
    """Broadcast report pushed to every known user."""
    return "\n".join(
        [
            "📡 รายงานสภาพอากาศอัตโนมัติ :",
            f"🕒 เวลา : {thai_timestamp(now, time_zone)}",
            *reading_lines(reading),
            f"🤖 AI : {analysis}",
        ]
    )
