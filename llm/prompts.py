"""Prompt construction for intent detection and reply generation."""

from typing import Optional, List

from pydantic import BaseModel, Field

from .base_client import Message

SAFETY_GUIDELINES = """KEBIJAKAN KEAMANAN KRITIS:
- JANGAN PERNAH memberikan diagnosis medis atau saran pengobatan
- JANGAN PERNAH meresepkan obat atau mengubah dosis
- SELALU arahkan ke tenaga medis profesional untuk masalah kesehatan
- Jika mendeteksi darurat medis, minta pasien menunggu relawan
- Gunakan bahasa yang sopan, empati, dan profesional
- Jika ragu, minta bantuan relawan daripada memberikan jawaban yang salah

DISCLAIMER: Saya adalah asisten AI PRIMA, bukan pengganti tenaga medis profesional."""

INTENT_SYSTEM_PROMPT = """Anda adalah pengklasifikasi pesan pasien untuk layanan pendampingan paliatif PRIMA.
Tentukan intent pesan terakhir pasien.

## Intent
- "accept": pasien menyetujui verifikasi (ya, iya, setuju)
- "decline": pasien menolak verifikasi
- "confirm_taken": pasien sudah minum obat
- "confirm_missed": pasien belum atau lupa minum obat
- "confirm_later": pasien akan minum obat nanti
- "unsubscribe": pasien ingin berhenti menerima pengingat
- "reminder_inquiry": pasien menanyakan jadwal atau pengingat obat
- "inquiry": pertanyaan umum atau permintaan bantuan
- "emergency": kondisi darurat medis
- "unknown": tidak jelas

## Format Respons
Jawab HANYA dengan JSON valid:
{
  "intent": "<intent>",
  "confidence": 0.0-1.0,
  "entities": {},
  "reasoning": "penjelasan singkat"
}"""

STRICT_LANGUAGE_INSTRUCTION = (
    "PENTING: Jawaban sebelumnya ditolak karena tidak dalam Bahasa Indonesia. "
    "Tulis SELURUH jawaban hanya dalam Bahasa Indonesia yang sederhana, "
    "tanpa kata atau huruf dari bahasa lain."
)


class PromptContext(BaseModel):
    """Patient and conversation facts available to prompts."""
    patient_id: str
    phone_number: str
    patient_name: Optional[str] = None
    verification_status: Optional[str] = None
    current_context: Optional[str] = None
    active_reminders: List[str] = Field(default_factory=list)
    history: List[Message] = Field(default_factory=list)

    def fingerprint(self) -> dict:
        """Stable summary of the patient used as a cache key component."""
        return {
            "name": self.patient_name,
            "verification_status": self.verification_status,
            "reminder_count": len(self.active_reminders),
        }


def _patient_block(context: PromptContext) -> str:
    lines = [
        "INFORMASI PASIEN:",
        f"- Nama: {context.patient_name or 'Pasien'}",
        f"- Status Verifikasi: {context.verification_status or 'Tidak diketahui'}",
    ]
    if context.current_context:
        lines.append(f"- Konteks Percakapan: {context.current_context}")
    if context.active_reminders:
        lines.append("- Pengingat Aktif: " + "; ".join(context.active_reminders))
    return "\n".join(lines)


def build_intent_messages(message: str, context: PromptContext, history_turns: int = 5) -> List[Message]:
    """Messages for structured intent detection."""
    messages = [Message(role="system", content=f"{INTENT_SYSTEM_PROMPT}\n\n{_patient_block(context)}")]
    messages.extend(context.history[-history_turns:])
    messages.append(Message(role="user", content=f"Pesan pasien: {message}\n\nBalas dengan JSON."))
    return messages


def build_response_messages(
    message: str,
    context: PromptContext,
    intent: Optional[str] = None,
    confidence: Optional[float] = None,
    strict_language: bool = False,
) -> List[Message]:
    """Messages for generating a patient-facing reply."""
    parts = [
        "Anda adalah asisten kesehatan PRIMA yang membantu pasien melalui WhatsApp.",
        _patient_block(context),
    ]
    if intent:
        parts.append(f"INTENT TERDETEKSI: {intent}\nCONFIDENCE: {confidence if confidence is not None else '-'}")
    parts.append(
        "PEDOMAN RESPON:\n"
        "- Selalu gunakan Bahasa Indonesia yang sopan dan mudah dipahami\n"
        "- Panggil pasien dengan nama depan saja\n"
        "- Jaga respons tetap ringkas\n"
        "- Gunakan format WhatsApp (*bold* bukan **bold**)"
    )
    parts.append(SAFETY_GUIDELINES)
    if strict_language:
        parts.append(STRICT_LANGUAGE_INSTRUCTION)

    messages = [Message(role="system", content="\n\n".join(parts))]
    messages.extend(context.history)
    messages.append(Message(role="user", content=message))
    return messages
