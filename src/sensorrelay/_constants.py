"""Internal constants shared across the package."""

LINE_API_URL = "https://api.line.me/v2/bot/message"
LINE_REPLY_ENDPOINT = "/reply"
LINE_PUSH_ENDPOINT = "/push"
LINE_SIGNATURE_HEADER = "X-Line-Signature"

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_COMPLETIONS_ENDPOINT = "/chat/completions"

DEFAULT_MAX_MESSAGE_LENGTH = 4000
TRUNCATION_MARKER = "\n...(ตัดข้อความ)"

# ------------------------------------------------------------------
# Backoff on throttling responses
# ------------------------------------------------------------------

BACKOFF_BASE_MS = 1000.0
BACKOFF_CAP_MS = 30000.0
BACKOFF_JITTER_MS = 800.0

# ------------------------------------------------------------------
# Questions answered by the model; anything else gets a status summary.
# ------------------------------------------------------------------

SUPPORTED_QUESTIONS: frozenset[str] = frozenset(
    {
        "สภาพอากาศตอนนี้เป็นอย่างไร",
        "ตอนนี้ควรตากผ้าไหม",
        "ตอนนี้ควรพกร่มออกจากบ้านไหม",
        "ความเข้มของแสงตอนนี้เป็นอย่างไร",
        "ความชื้นตอนนี้เป็นอย่างไร",
    }
)

REPORT_QUESTION = "วิเคราะห์สภาพอากาศขณะนี้"

# ------------------------------------------------------------------
# Chat copy
# ------------------------------------------------------------------

MSG_NO_SENSOR_DATA = "❌ ยังไม่มีข้อมูลจากเซ็นเซอร์"
MSG_PLEASE_WAIT = "⏳ กำลังถาม AI..."
MSG_EMPTY_ANSWER = "❌ คำตอบจาก AI ว่างเปล่า ไม่สามารถส่งข้อความได้"
MSG_AI_UNAVAILABLE = "❌ ขออภัย ระบบ AI ไม่พร้อมใช้งานในขณะนี้ กรุณาลองใหม่ภายหลัง"
MSG_NO_TEXT = "(ไม่มีข้อความ)"
ANSWER_TEMPLATE = "{question}?\n- คำตอบ จาก AI : {answer}"
