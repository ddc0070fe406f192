from colloquy.models import VoiceDescriptor

SPANISH_VOICES = (
    VoiceDescriptor(voice_id="es-ES", name="Español (España)", language_code="es-ES"),
    VoiceDescriptor(voice_id="es-MX", name="Español (México)", language_code="es-MX"),
    VoiceDescriptor(voice_id="es-US", name="Español (Estados Unidos)", language_code="es-US"),
)


def list_voices() -> list[VoiceDescriptor]:
    return list(SPANISH_VOICES)
