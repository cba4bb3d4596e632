"""
Playback Controller
===================
State machine for reading a question aloud, either with a synthetic speech
engine or with a pre-recorded audio clip.

States:
    IDLE ──play──▶ PLAYING ──pause──▶ PAUSED ──resume──▶ PLAYING
    PLAYING/PAUSED ──stop / natural end──▶ IDLE

Mode selection happens in ``load``: if the question has an audio path and
it resolves to a URL, the controller drives an ``AudioHandle``; otherwise it
speaks the linearized transcript through the ``SpeechService``.

The speech engine does not announce pause changes, so while in speech mode
the controller polls ``is_speaking``/``is_paused`` on a short interval and
mirrors them into ``state``. The poll lives as long as the controller is in
speech mode and is cancelled on teardown (``close`` / ``async with``).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from .media import MediaResolver, RendererError, RequestSequencer
from .models import MediaRef, QuestionOption
from .speech import linearize

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_AUDIO_BUCKET = "question-media"

# Slightly slower than normal for younger readers
DEFAULT_RATE = 0.9
DEFAULT_PITCH = 1.0
DEFAULT_VOLUME = 1.0
PREFERRED_LANG = "en-AU"


class PlaybackError(RendererError):
    """Reported through ``on_error``; never raised to the caller."""


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


class PlaybackMode(str, Enum):
    SPEECH = "speech"
    AUDIO = "audio"


# ─── Collaborator Interfaces ──────────────────────────────────────────────────


class Voice(Protocol):
    """A synthesis voice as listed by the engine."""

    lang: str
    default: bool


class SpeechEngine(Protocol):
    """Platform text-to-speech engine (one per process)."""

    def speak(
        self,
        text: str,
        *,
        rate: float,
        pitch: float,
        volume: float,
        voice: Optional[Voice] = None,
        on_end: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> bool: ...

    def voices(self) -> list[Voice]: ...

    def stop(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def is_speaking(self) -> bool: ...

    def is_paused(self) -> bool: ...

    def is_supported(self) -> bool: ...


class AudioHandle(Protocol):
    """Playable media element for a pre-recorded clip."""

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def on_ended(self, callback: Callable[[], None]) -> None: ...

    def on_error(self, callback: Callable[[Exception], None]) -> None: ...


AudioFactory = Callable[[str], AudioHandle]


# ─── Speech Service ───────────────────────────────────────────────────────────


class SpeechService:
    """
    Owns the process-wide speech engine.

    The engine is initialised on first use and reset on stop. Starting an
    utterance always cancels the current one, so at most one utterance is
    ever speaking.
    """

    def __init__(self, engine: SpeechEngine):
        self.engine = engine
        self._initialized = False

    def init(self) -> None:
        if not self._initialized:
            self._initialized = True
            logger.debug("Speech engine initialised")

    def reset(self) -> None:
        self.engine.stop()

    def is_supported(self) -> bool:
        return self.engine.is_supported()

    def preferred_voice(self) -> Optional[Voice]:
        """
        Pick the voice to read with.

        Australian English first, then any English variant, then the
        engine's default voice, then whatever is listed first. ``None``
        leaves the choice to the engine.
        """
        if not self.is_supported():
            return None
        voices = list(self.engine.voices() or [])
        if not voices:
            return None

        for voice in voices:
            if voice.lang == PREFERRED_LANG:
                return voice
        for voice in voices:
            if voice.lang.startswith("en-"):
                return voice
        for voice in voices:
            if voice.default:
                return voice
        return voices[0]

    def speak(
        self,
        text: str,
        rate: float = DEFAULT_RATE,
        pitch: float = DEFAULT_PITCH,
        volume: float = DEFAULT_VOLUME,
        on_end: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> bool:
        if not self.is_supported():
            logger.warning("Text-to-Speech is not supported on this platform")
            return False

        self.init()
        self.stop()

        if not text.strip():
            return False

        voice = self.preferred_voice()
        if voice is not None:
            logger.debug(f"Speaking with voice lang={voice.lang}")

        try:
            return bool(self.engine.speak(
                text,
                rate=rate,
                pitch=pitch,
                volume=volume,
                voice=voice,
                on_end=on_end,
                on_error=on_error,
            ))
        except Exception as e:
            logger.error(f"Error starting speech: {e}")
            return False

    def stop(self) -> None:
        if self.is_supported():
            self.reset()

    def pause(self) -> None:
        if self.is_supported() and self.engine.is_speaking():
            self.engine.pause()

    def resume(self) -> None:
        if self.is_supported() and self.engine.is_paused():
            self.engine.resume()

    def is_speaking(self) -> bool:
        return self.engine.is_speaking()

    def is_paused(self) -> bool:
        return self.engine.is_paused()


# ─── Controller ───────────────────────────────────────────────────────────────


class PlaybackController:
    """
    Read-aloud state machine for one question at a time.

    Usage:
        async with PlaybackController(speech, resolver, audio_factory) as player:
            await player.load(content=blocks, options=options, audio_path=path)
            player.toggle()   # play
            player.toggle()   # pause
            player.stop()
    """

    def __init__(
        self,
        speech: SpeechService,
        resolver: Optional[MediaResolver] = None,
        audio_factory: Optional[AudioFactory] = None,
        on_start: Optional[Callable[[], None]] = None,
        on_end: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_state_change: Optional[Callable[[PlaybackState], None]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        audio_bucket: str = DEFAULT_AUDIO_BUCKET,
    ):
        self.speech = speech
        self.resolver = resolver or MediaResolver()
        self.audio_factory = audio_factory
        self.on_start = on_start
        self.on_end = on_end
        self.on_error = on_error
        self.on_state_change = on_state_change
        self.poll_interval = poll_interval
        self.audio_bucket = audio_bucket

        self.state = PlaybackState.IDLE
        self.mode = PlaybackMode.SPEECH
        self.text = ""
        self.audio: Optional[AudioHandle] = None

        self._sequencer = RequestSequencer()
        self._poll_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "PlaybackController":
        if self.mode == PlaybackMode.SPEECH:
            self._start_poll()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def is_playing(self) -> bool:
        return self.state != PlaybackState.IDLE

    @property
    def is_paused(self) -> bool:
        return self.state == PlaybackState.PAUSED

    # ─── Loading ──────────────────────────────────────────────────────────

    async def load(
        self,
        content: Optional[list] = None,
        options: Optional[list[QuestionOption]] = None,
        plain_text: Optional[str] = None,
        audio_path: Optional[str] = None,
        audio_bucket: Optional[str] = None,
    ) -> PlaybackMode:
        """
        Prepare playback for a new question.

        Stops whatever the previous question was playing, computes the
        transcript and picks the playback mode. If ``load`` is called again
        before the audio URL arrives, the older result is discarded.
        """
        self.stop()
        self.text = plain_text or linearize(content, options)

        seq = self._sequencer.issue("audio")
        url = None
        if audio_path:
            ref = MediaRef(bucket=audio_bucket or self.audio_bucket, path=audio_path)
            url = await self.resolver.resolve(ref)

        if not self._sequencer.is_latest("audio", seq):
            logger.debug(f"Discarding stale audio resolution (seq {seq})")
            return self.mode

        if url and self.audio_factory is not None:
            self._use_audio(url)
        else:
            if audio_path and not url:
                logger.warning(f"Audio {audio_path!r} unavailable, falling back to speech")
            self._use_speech()
        return self.mode

    def _use_audio(self, url: str) -> None:
        self._stop_poll()
        self.audio = self.audio_factory(url)
        self.audio.on_ended(self._handle_audio_ended)
        self.audio.on_error(self._handle_audio_error)
        self.mode = PlaybackMode.AUDIO
        logger.info("Playback mode: pre-recorded audio")

    def _use_speech(self) -> None:
        self.audio = None
        self.mode = PlaybackMode.SPEECH
        self._start_poll()
        logger.info("Playback mode: synthetic speech")

    # ─── Transport ────────────────────────────────────────────────────────

    def toggle(self) -> None:
        """Single-button behaviour: start, pause or resume."""
        if self.state == PlaybackState.PAUSED:
            self.resume()
        elif self.state == PlaybackState.PLAYING:
            self.pause()
        else:
            self.play()

    def play(self) -> None:
        if self.mode == PlaybackMode.AUDIO:
            self._play_audio()
        else:
            self._play_speech()

    def pause(self) -> None:
        if self.state != PlaybackState.PLAYING:
            return
        if self.mode == PlaybackMode.AUDIO and self.audio:
            self.audio.pause()
            self._set_state(PlaybackState.PAUSED)
        else:
            # Engine may have finished between polls
            self.speech.pause()
            self.sync_from_engine()

    def resume(self) -> None:
        if self.state != PlaybackState.PAUSED:
            return
        if self.mode == PlaybackMode.AUDIO and self.audio:
            self.audio.play()
        else:
            self.speech.resume()
        self._set_state(PlaybackState.PLAYING)

    def stop(self) -> None:
        """Stop immediately. Safe to call in any state."""
        if self.mode == PlaybackMode.AUDIO and self.audio:
            self.audio.pause()
            self.audio.seek(0)
        else:
            self._sequencer.invalidate("speech")
            self.speech.stop()
        self._set_state(PlaybackState.IDLE)

    async def close(self) -> None:
        """Tear down: stop playback and release the poll."""
        self.stop()
        self._stop_poll()
        if self._poll_task is not None:
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    def _play_speech(self) -> None:
        if not self.speech.is_supported():
            self._report(PlaybackError("Text-to-Speech is not supported on this platform"))
            return
        if not self.text:
            self._report(PlaybackError("No text to read"))
            return

        # Issued before speak(): cancelling the previous utterance may fire
        # its callbacks, which must already be stale.
        seq = self._sequencer.issue("speech")
        started = self.speech.speak(
            self.text,
            on_end=lambda: self._handle_speech_ended(seq),
            on_error=lambda error: self._handle_speech_error(seq, error),
        )
        if started:
            self._set_state(PlaybackState.PLAYING)
            if self.on_start:
                self.on_start()

    def _play_audio(self) -> None:
        if self.audio is None:
            return
        try:
            self.audio.play()
        except Exception as e:
            error = PlaybackError("Audio playback failed")
            error.__cause__ = e
            self._set_state(PlaybackState.IDLE)
            self._report(error)
            return
        self._set_state(PlaybackState.PLAYING)
        if self.on_start:
            self.on_start()

    # ─── Engine / Element Events ──────────────────────────────────────────

    def _handle_speech_ended(self, seq: int) -> None:
        if not self._sequencer.is_latest("speech", seq):
            logger.debug(f"Ignoring end of superseded utterance (seq {seq})")
            return
        self._set_state(PlaybackState.IDLE)
        if self.on_end:
            self.on_end()

    def _handle_speech_error(self, seq: int, error: Exception) -> None:
        if not self._sequencer.is_latest("speech", seq):
            logger.debug(f"Ignoring error from superseded utterance (seq {seq}): {error}")
            return
        self._set_state(PlaybackState.IDLE)
        self._report(error)

    def _handle_audio_ended(self) -> None:
        self._set_state(PlaybackState.IDLE)
        if self.on_end:
            self.on_end()

    def _handle_audio_error(self, error: Optional[Exception] = None) -> None:
        self._set_state(PlaybackState.IDLE)
        self._report(PlaybackError("Audio playback failed"))

    # ─── Engine Poll ──────────────────────────────────────────────────────

    def _start_poll(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll())

    def _stop_poll(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.sync_from_engine()

    def sync_from_engine(self) -> None:
        """Mirror the engine's speaking/paused flags into ``state``."""
        if self.mode != PlaybackMode.SPEECH:
            return
        if not self.speech.is_speaking():
            self._set_state(PlaybackState.IDLE)
        elif self.speech.is_paused():
            self._set_state(PlaybackState.PAUSED)
        else:
            self._set_state(PlaybackState.PLAYING)

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _set_state(self, state: PlaybackState) -> None:
        if state == self.state:
            return
        logger.debug(f"Playback {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    def _report(self, error: Exception) -> None:
        logger.warning(f"Playback error: {error}")
        if self.on_error:
            self.on_error(error)
