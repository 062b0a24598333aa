"""Tests for result writers."""

import json

import pytest

from trackmeta.core.fallback import synthesize_analysis
from trackmeta.core.models import (
    AnalysisResult,
    GenreResult,
    KeyResult,
    MoodResult,
    Scale,
    StemSet,
    TempoResult,
)
from trackmeta.core.result_writer import (
    JSONResultWriter,
    TextResultWriter,
    create_result_writer,
)


@pytest.fixture
def result(features):
    return AnalysisResult(
        tempo=TempoResult(bpm=128.0, confidence=0.85),
        key=KeyResult(key="F# minor", confidence=0.66, scale=Scale.MINOR, root=6),
        features=features,
        genre=GenreResult(primary="Electronic", confidence=1.0, secondary=["Pop", "Trap"],
                          scores={"Electronic": 1.0, "Pop": 0.5, "Trap": 0.3}),
        mood=MoodResult(primary="Party", energy="high", valence="happy", intensity="moderate",
                        confidence=0.9, tags=["Party", "Energetic"],
                        scores={"Party": 1.0, "Energetic": 0.8}),
        duration=215.0,
        metadata={'processing_time': 1.234},
        stems=StemSet(drums="s3://stems/drums.wav"),
    )


class TestTextResultWriter:
    def test_writes_sections(self, tmp_path, result):
        path = tmp_path / "out" / "report.txt"
        TextResultWriter(include_scores=True).write({"track.wav": result}, path)
        text = path.read_text(encoding='utf-8')

        assert "TRACKMETA ANALYSIS RESULTS" in text
        assert "SOURCE: track.wav" in text
        assert "BPM: 128.00" in text
        assert "Key: F# minor" in text
        assert "Secondary: Pop, Trap" in text
        assert "Tags: Party, Energetic" in text
        assert "drums: s3://stems/drums.wav" in text
        assert "END OF REPORT" in text
        assert "WARNING" not in text

    def test_flags_synthetic_results(self, tmp_path):
        path = tmp_path / "report.txt"
        TextResultWriter(include_timestamp=False).write(
            {"https://x/y.mp3": synthesize_analysis("https://x/y.mp3")}, path
        )
        text = path.read_text(encoding='utf-8')
        assert "WARNING: synthetic result" in text
        assert "Generated:" not in text

    def test_flags_placeholder_waveform(self, tmp_path, result):
        result.metadata['synthetic_waveform'] = True
        path = tmp_path / "report.txt"
        TextResultWriter().write({"a.mp3": result}, path)
        assert "placeholder waveform" in path.read_text(encoding='utf-8')


class TestJSONResultWriter:
    def test_writes_results(self, tmp_path, result):
        path = tmp_path / "report.json"
        JSONResultWriter().write({"track.wav": result}, path)
        data = json.loads(path.read_text(encoding='utf-8'))

        assert data["total_tracks"] == 1
        entry = data["results"]["track.wav"]
        assert entry["tempo"]["bpm"] == 128.0
        assert entry["key"]["root_name"] == "F#"
        assert len(entry["features"]["chroma_mean"]) == 12

    def test_features_can_be_omitted(self, tmp_path, result):
        path = tmp_path / "report.json"
        JSONResultWriter(include_features=False).write({"track.wav": result}, path)
        data = json.loads(path.read_text(encoding='utf-8'))
        assert "features" not in data["results"]["track.wav"]


class TestFactory:
    def test_known_formats(self):
        assert isinstance(create_result_writer("json"), JSONResultWriter)
        assert isinstance(create_result_writer("TXT"), TextResultWriter)

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            create_result_writer("xml")
