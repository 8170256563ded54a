from __future__ import annotations

from enum import Enum


class VoiceEffect(str, Enum):
    """Audio character presets applied to the original soundtrack."""
    CHIPMUNK = "chipmunk"
    DEEP = "deep"
    ROBOT = "robot"
    ECHO = "echo"
    ALIEN = "alien"
    HELIUM = "helium"
    GIANT = "giant"


# Pitch shifts resample to 44.1 kHz first so tempo compensation preserves duration.
VOICE_EFFECT_FILTERS: dict[VoiceEffect, str] = {
    VoiceEffect.CHIPMUNK: "aresample=44100,asetrate=44100*1.5,aresample=44100,atempo=0.6667",
    VoiceEffect.DEEP: "aresample=44100,asetrate=44100*0.75,aresample=44100,atempo=1.3333",
    VoiceEffect.ROBOT: (
        "afftfilt=real='hypot(re,im)*cos(0)':imag='hypot(re,im)*sin(0)'"
        ":win_size=512:overlap=0.75"
    ),
    VoiceEffect.ECHO: "aecho=0.8:0.88:300:0.4",
    VoiceEffect.ALIEN: "tremolo=f=200:d=0.8",
    VoiceEffect.HELIUM: "aresample=44100,asetrate=44100*2,aresample=44100,atempo=0.5",
    VoiceEffect.GIANT: "aresample=44100,asetrate=44100*0.5,aresample=44100,atempo=2,volume=1.2",
}


def build_voice_filter(name: str | None) -> str | None:
    if not name:
        return None
    try:
        effect = VoiceEffect(name.strip().lower())
    except ValueError:
        return None
    return VOICE_EFFECT_FILTERS[effect]
