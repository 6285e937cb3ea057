from __future__ import annotations

from unittest.mock import patch

from component_import.models.processing_result import ChunkOutcome
from component_import.services.progress import ProgressTracker


def test_no_bar_without_tty():
    with patch("component_import.services.progress.is_tty_enabled", return_value=False):
        with ProgressTracker(3) as tracker:
            assert tracker.pbar is None
            tracker.on_chunk(ChunkOutcome(0, 2, "committed", created=2))
            tracker.on_chunk(ChunkOutcome(1, 2, "failed"))
    assert tracker.completed == 2
    assert tracker.created == 2
    assert tracker.failed_chunks == 1


def test_bar_advances_per_chunk():
    with patch("component_import.services.progress.is_tty_enabled", return_value=True), \
         patch("component_import.services.progress.tqdm") as mock_tqdm:
        bar = mock_tqdm.return_value
        tracker = ProgressTracker(description="Importing takeoff.xlsx")
        tracker.set_total(4)
        tracker.on_chunk(ChunkOutcome(0, 10, "committed", created=10))
        tracker.close()

    assert mock_tqdm.call_args.kwargs["desc"] == "Importing takeoff.xlsx"
    assert bar.total == 4
    bar.update.assert_called_once_with(1)
    bar.set_postfix.assert_called_once_with(created=10, failed=0)
    bar.close.assert_called_once()
    assert tracker.pbar is None
