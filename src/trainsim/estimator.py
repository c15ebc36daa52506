"""One-dimensional recursive noise filter and the motion predictor built on it."""

from dataclasses import dataclass

from .config import INITIAL_UNCERTAINTY, MEASUREMENT_NOISE


class ScalarEstimator:
    """
    Scalar Kalman-style estimator holding (estimate, uncertainty).

    The first measurement is taken verbatim; later ones are blended in with
    gain ``uncertainty / (uncertainty + R)``. One instance per train.
    """

    def __init__(self, measurement_noise: float = MEASUREMENT_NOISE,
                 initial_uncertainty: float = INITIAL_UNCERTAINTY):
        self.measurement_noise = measurement_noise
        self.initial_uncertainty = initial_uncertainty
        self.estimate = 0.0
        self.uncertainty = initial_uncertainty
        self.initialized = False

    def update(self, measurement: float) -> float:
        """
        Fold a measurement into the estimate.

        Args:
            measurement: New raw reading.

        Returns:
            The updated estimate (the measurement itself on the first call).
        """
        if not self.initialized:
            self.estimate = measurement
            self.uncertainty = self.initial_uncertainty
            self.initialized = True
            return measurement

        gain = self.uncertainty / (self.uncertainty + self.measurement_noise)
        self.estimate += gain * (measurement - self.estimate)
        self.uncertainty *= (1 - gain)
        return self.estimate

    @property
    def confidence(self) -> float:
        """How far uncertainty has dropped from its initial value, in [0, 1]."""
        return 1.0 - self.uncertainty / self.initial_uncertainty

    def reset(self) -> None:
        self.estimate = 0.0
        self.uncertainty = self.initial_uncertainty
        self.initialized = False


@dataclass
class MotionPrediction:
    position: float
    velocity: float
    confidence: float


class MotionEstimator:
    """
    Smoothed progress along a route plus the last reported velocity.

    Positions go through a :class:`ScalarEstimator`; the velocity is taken
    as reported and used to extrapolate the smoothed position.
    """

    def __init__(self, initial_position: float = 0.0,
                 measurement_noise: float = MEASUREMENT_NOISE,
                 initial_uncertainty: float = INITIAL_UNCERTAINTY):
        self.filter = ScalarEstimator(measurement_noise, initial_uncertainty)
        self.last_position = initial_position
        self.velocity = 0.0

    def update(self, position: float, velocity: float) -> float:
        """Fold in a position reading; returns the smoothed position."""
        self.last_position = position
        self.velocity = velocity
        return self.filter.update(position)

    def predict(self, dt: float) -> MotionPrediction:
        """
        Extrapolate ``dt`` seconds ahead from the smoothed position.

        Before any update the prediction starts from ``initial_position``.
        """
        return MotionPrediction(
            position=self.position + self.velocity * dt,
            velocity=self.velocity,
            confidence=self.filter.confidence,
        )

    @property
    def position(self) -> float:
        return self.filter.estimate if self.filter.initialized else self.last_position
