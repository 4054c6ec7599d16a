"""
Dispatch of windows to the classifier, serially or with a bounded worker pool.
"""

import logging
import queue
import threading
import traceback
from itertools import islice
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from tqdm import tqdm

from .classifiers import Classifier
from .config import DEFAULT_BATCH_SIZE, DispatchModes
from .data import Prediction, Window
from .data.utils import resize_crops, to_tensor
from .exceptions import ClassifierError, RunCancelledError
from .raster import RasterSource

logger = logging.getLogger(__name__)

WindowResult = Tuple[Window, List[Prediction]]
ResultHandler = Callable[[Window, List[Prediction]], object]

_END_OF_DATA = None


class WindowDispatcher:
    """Feeds windows to the classifier and hands each result to a handler.

    In serial mode batches are read, classified and retired strictly in
    scheduler order. In concurrent mode a loader thread fills a bounded queue
    and ``num_workers`` threads classify from it, so at most ``num_workers``
    classification calls are in flight. The handler then runs on worker threads
    and must be thread-safe. Every result carries its window, so completion
    order does not matter downstream.

    The first error raised by any worker stops the run and is re-raised by
    ``run``.
    """

    def __init__(
        self,
        source: RasterSource,
        classifier: Classifier,
        mode: DispatchModes = DispatchModes.CONCURRENT,
        num_workers: int = 1,
        batch_size: int = DEFAULT_BATCH_SIZE,
        queue_size: int = 24,
        window_size: Optional[Tuple[int, int]] = None,
        show_progress: bool = True,
    ):
        """
        Args:
            source: Raster source to read windows from
            classifier: Classifier to run on the windows
            mode: Serial or concurrent dispatch, fixed for the run
            num_workers: Concurrency limit of classification calls
            batch_size: Windows per classification call
            queue_size: Maximum number of batches waiting for a worker
            window_size: Size crops are resized to, defaults to the classifier's
            show_progress: Display a progress bar
        """
        self.source = source
        self.classifier = classifier
        self.mode = DispatchModes(mode)
        self.num_workers = 1 if self.mode == DispatchModes.SERIAL else max(1, num_workers)
        self.batch_size = batch_size
        self.window_size = window_size or classifier.native_window_size
        self.show_progress = show_progress

        self.data_queue: "queue.Queue[Optional[List[Window]]]" = queue.Queue(
            maxsize=queue_size
        )
        self.stop_event = threading.Event()
        self._errors: List[BaseException] = []
        self._lock = threading.Lock()
        self.windows_processed = 0

        logger.info(
            f"Initialized {self.mode} dispatcher: workers={self.num_workers}, "
            f"batch_size={batch_size}"
        )

    def cancel(self) -> None:
        """Stop the run; in-flight batches complete, queued ones are abandoned.

        A dispatcher cancelled before ``run`` is called stays cancelled.
        """
        self.stop_event.set()

    def _batches(self, windows: Iterable[Window]) -> Iterator[List[Window]]:
        iterator = iter(windows)
        while True:
            batch = list(islice(iterator, self.batch_size))
            if not batch:
                return
            yield batch

    def process_batch(self, windows: List[Window]) -> List[WindowResult]:
        """Read, classify and pair the windows of one batch with their predictions."""
        crops = [to_tensor(self.source.read_window(w.rect)) for w in windows]
        batch = resize_crops(crops, self.window_size)

        try:
            predictions = self.classifier.classify(batch)
        except ClassifierError:
            raise
        except Exception as e:
            logger.debug(traceback.format_exc())
            raise ClassifierError(
                f"Classification failed: {e}", window=windows[0].rect.to_list()
            ) from e

        if len(predictions) != len(windows):
            raise ClassifierError(
                f"Classifier returned {len(predictions)} results for {len(windows)} windows"
            )
        return list(zip(windows, predictions))

    def _retire(
        self,
        results: List[WindowResult],
        handler: ResultHandler,
        progress_bar: Optional[tqdm],
    ) -> None:
        for window, predictions in results:
            handler(window, predictions)
        with self._lock:
            self.windows_processed += len(results)
        if progress_bar is not None:
            progress_bar.update(len(results))

    def _record_error(self, error: BaseException) -> None:
        with self._lock:
            self._errors.append(error)
        self.stop_event.set()

    def run(
        self,
        windows: Iterable[Window],
        handler: ResultHandler,
        total: Optional[int] = None,
    ) -> int:
        """
        Process every window exactly once.

        Args:
            windows: Windows in scheduler order
            handler: Called with each window and its predictions
            total: Number of windows, for progress display

        Returns:
            int: Number of windows processed

        Raises:
            RunCancelledError: If the run was cancelled
            SourceError, ClassifierError: First error raised by a worker
        """
        self._errors.clear()
        self.windows_processed = 0

        progress_bar = (
            tqdm(total=total, desc="Classifying windows", unit="window")
            if self.show_progress
            else None
        )
        try:
            if self.mode == DispatchModes.SERIAL:
                self._run_serial(windows, handler, progress_bar)
            else:
                self._run_concurrent(windows, handler, progress_bar)
        finally:
            if progress_bar is not None:
                progress_bar.close()

        logger.info(f"Processed {self.windows_processed} windows")
        return self.windows_processed

    def _run_serial(
        self,
        windows: Iterable[Window],
        handler: ResultHandler,
        progress_bar: Optional[tqdm],
    ) -> None:
        try:
            for batch in self._batches(windows):
                if self.stop_event.is_set():
                    raise RunCancelledError()
                self._retire(self.process_batch(batch), handler, progress_bar)
        except KeyboardInterrupt:
            logger.info("Serial dispatch stopped by keyboard interrupt")
            self.stop_event.set()
            raise RunCancelledError("Run cancelled by user")

    def _put(self, item: Optional[List[Window]]) -> bool:
        """Blocking put that gives up once the run is stopped."""
        while not self.stop_event.is_set():
            try:
                self.data_queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _data_loading_worker(self, windows: Iterable[Window]) -> None:
        logger.debug("Starting window loading thread")
        try:
            for batch in self._batches(windows):
                if not self._put(batch):
                    logger.info("Window loading stopped by stop event")
                    break
        except BaseException as e:
            logger.error(f"Error in window loading thread: {e!r}")
            self._record_error(e)
        finally:
            for _ in range(self.num_workers):
                if not self._put(_END_OF_DATA):
                    break
            logger.debug("Window loading thread finished")

    def _detection_worker(
        self, handler: ResultHandler, progress_bar: Optional[tqdm]
    ) -> None:
        while not self.stop_event.is_set():
            try:
                batch = self.data_queue.get(timeout=0.5)
            except queue.Empty:
                continue

            if batch is _END_OF_DATA:
                break

            try:
                self._retire(self.process_batch(batch), handler, progress_bar)
            except BaseException as e:
                logger.error(f"Stopping run, worker failed: {e!r}")
                self._record_error(e)
                break

    def _run_concurrent(
        self,
        windows: Iterable[Window],
        handler: ResultHandler,
        progress_bar: Optional[tqdm],
    ) -> None:
        # drop anything left over from a previous run
        while not self.data_queue.empty():
            self.data_queue.get_nowait()

        threads = [
            threading.Thread(
                target=self._data_loading_worker,
                args=(windows,),
                name="window-loader",
                daemon=True,
            )
        ]
        threads.extend(
            threading.Thread(
                target=self._detection_worker,
                args=(handler, progress_bar),
                name=f"detection-worker-{i}",
                daemon=True,
            )
            for i in range(self.num_workers)
        )

        cancelled = False
        for thread in threads:
            thread.start()
        try:
            for thread in threads:
                while thread.is_alive():
                    thread.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("Concurrent dispatch stopped by keyboard interrupt")
            cancelled = True
            self.stop_event.set()
            for thread in threads:
                thread.join()

        if self._errors:
            error = self._errors[0]
            if isinstance(error, Exception):
                raise error
            # not an Exception: SystemExit or an interrupt raised on a worker thread
            raise RunCancelledError(
                f"Run stopped by {type(error).__name__} in a worker thread"
            ) from error
        if cancelled:
            raise RunCancelledError("Run cancelled by user")
        if self.stop_event.is_set():
            raise RunCancelledError()
