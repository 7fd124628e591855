import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_model_cache = {}


class Transcriber:
    def __init__(self, model_size: str = "base", language: str | None = None):
        self.model_size = model_size
        self.language = language
        self._model = None

    def _load_model(self):
        if self.model_size in _model_cache:
            self._model = _model_cache[self.model_size]
            return

        from faster_whisper import WhisperModel

        device = "cpu"
        compute_type = "int8"
        try:
            import torch
            if torch.cuda.is_available():
                device = "cuda"
                compute_type = "float16"
        except ImportError:
            pass

        logger.info(
            "Loading Whisper model '%s' on %s (compute_type=%s)...",
            self.model_size, device, compute_type,
        )
        self._model = WhisperModel(
            self.model_size,
            device=device,
            compute_type=compute_type,
        )
        _model_cache[self.model_size] = self._model
        logger.info("Whisper model loaded")

    @property
    def is_loaded(self) -> bool:
        return self._model is not None or self.model_size in _model_cache

    def transcribe(self, audio_path: str) -> dict:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        if self._model is None:
            self._load_model()

        logger.info("Transcribing %s...", audio_path.name)
        segments, info = self._model.transcribe(
            str(audio_path),
            language=self.language,
            beam_size=5,
            vad_filter=True,
        )

        all_segments = []
        for segment in segments:
            all_segments.append({
                "start": round(segment.start, 2),
                "end": round(segment.end, 2),
                "text": segment.text.strip(),
            })

        logger.info("Transcription finished: %d segments", len(all_segments))

        return {
            "text": "\n".join(s["text"] for s in all_segments),
            "language": info.language,
            "duration_secs": round(info.duration),
            "segments": all_segments,
        }
