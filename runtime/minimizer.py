# runtime/minimizer.py

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from geometry.mesh import Mesh, MeshSnapshot

logger = logging.getLogger("elastic_projection")


class MapOptimizer:
    """Drive a mesh through relaxation, tearing and stitching until nothing changes.

    Each iteration tries, in order, a descent step, a tear and a stitch; the
    first that makes progress ends the iteration. When none does, or when the
    cancel event is set, the mesh is finalised.
    """

    def __init__(
        self,
        mesh: Mesh,
        *,
        max_steps: Optional[int] = None,
        on_step: Optional[Callable[[Mesh], None]] = None,
        log_every: int = 100,
        criteria_weights: Sequence[Tuple[str, np.ndarray]] = (),
    ) -> None:
        self.mesh = mesh
        self.max_steps = max_steps
        self.on_step = on_step
        self.log_every = log_every
        # (label, grid) pairs reported after the uniform weighting
        self.criteria_weights = list(criteria_weights)
        self.cancel_event = threading.Event()
        self.iterations = 0
        self.elapsed = 0.0
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    def __repr__(self):
        mesh = self.mesh
        return (
            f"MapOptimizer({len(mesh.vertices)} vertices, {len(mesh.elements)} elements, "
            f"state={mesh.state.name}, step_size={mesh.step_size:.3e}, "
            f"max_steps={self.max_steps})"
        )

    def step(self) -> bool:
        """Advance the state machine once; ``False`` means the map is finished."""
        mesh = self.mesh
        return mesh.update() or mesh.rupture() or mesh.stitch()

    def run(self, cancel_event: Optional[threading.Event] = None) -> Mesh:
        """Run to completion or cancellation on the calling thread."""
        cancel = cancel_event if cancel_event is not None else self.cancel_event
        if self.mesh.finalised:
            logger.info("Mesh is already finalised; nothing to optimise.")
            return self.mesh
        logger.info("Starting %r", self)
        start = time.perf_counter()
        try:
            while not cancel.is_set():
                if self.max_steps is not None and self.iterations >= self.max_steps:
                    logger.info("Stopping after %d iterations.", self.iterations)
                    break
                if not self.step():
                    break
                self.iterations += 1
                if self.on_step is not None:
                    self.on_step(self.mesh)
                if self.log_every and self.iterations % self.log_every == 0:
                    logger.info(
                        "Iteration %d: energy %.6f, step size %.3e, state %s",
                        self.iterations,
                        self.mesh.get_total_energy(),
                        self.mesh.step_size,
                        self.mesh.state.name,
                    )
            else:
                logger.info("Optimisation cancelled after %d iterations.", self.iterations)
        finally:
            self.mesh.finalise()
            self.elapsed = time.perf_counter() - start

        self.report()
        return self.mesh

    def report(self) -> List[Tuple[str, tuple]]:
        """Log the run time, final energy and distortion criteria.

        The criteria are evaluated once with uniform weight and once per
        entry of ``criteria_weights``; the ``(label, criteria)`` pairs are
        returned in that order.
        """
        logger.info("It finished in %.1f min.", self.elapsed / 60)
        logger.info("The final convergence is %.6f.", self.mesh.get_total_energy())
        results = []
        for label, weights in [("global", None), *self.criteria_weights]:
            criteria = self.mesh.get_criteria(weights)
            logger.info(
                "The %s areal distortion is %+.3f ± %.3f Np, "
                "and the %s angular distortion is %.3f Np.",
                label,
                criteria[0],
                criteria[1],
                label,
                criteria[2],
            )
            results.append((label, criteria))
        return results

    def start(self, cancel_event: Optional[threading.Event] = None) -> threading.Thread:
        """Run the optimisation on a background thread and return it."""
        if cancel_event is not None:
            self.cancel_event = cancel_event

        def _target():
            try:
                self.run(self.cancel_event)
            except Exception as exc:
                # re-raised by join() on the caller's thread
                self._error = exc
                logger.error("Optimisation failed: %s", exc)

        self._thread = threading.Thread(target=_target, name="map-optimizer", daemon=True)
        self._thread.start()
        return self._thread

    def cancel(self) -> None:
        self.cancel_event.set()

    def join(self, timeout: Optional[float] = None) -> Mesh:
        """Wait for a background run and re-raise anything it failed with."""
        if self._thread is not None:
            self._thread.join(timeout)
        if self._error is not None:
            raise self._error
        return self.mesh

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def snapshot(self) -> MeshSnapshot:
        return self.mesh.snapshot()
