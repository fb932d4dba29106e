"""Prometheus metrics for OTP Gateway."""

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

from otpgate.core.enums import MetricsStatus

# Session lifecycle metrics
SESSION_TRANSITIONS_TOTAL = Counter(
    "otpgw_session_transitions_total",
    "Session status transitions applied by the lifecycle controller",
    ["status"],
    registry=REGISTRY,
)

SESSIONS_LIVE = Gauge(
    "otpgw_sessions_live", "Sessions currently held in the session registry", registry=REGISTRY
)

PAIRING_RESULTS_TOTAL = Counter(
    "otpgw_pairing_results_total",
    "Outcomes returned to pairing requests",
    ["outcome"],
    registry=REGISTRY,
)

# Cleanup and health metrics
CLEANUP_FAILURES_TOTAL = Counter(
    "otpgw_cleanup_failures_total",
    "Session resource reclamation failures",
    ["stage"],
    registry=REGISTRY,
)

HEALTH_RECLAIMS_TOTAL = Counter(
    "otpgw_health_reclaims_total",
    "Sessions reclaimed by the health sweep",
    ["reason"],
    registry=REGISTRY,
)

HEALTH_SWEEP_DURATION = Histogram(
    "otpgw_health_sweep_duration_seconds",
    "Duration of a full health sweep",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

# OTP metrics
OTP_ISSUED_TOTAL = Counter(
    "otpgw_otp_issued_total", "OTP issuance attempts", ["status"], registry=REGISTRY
)

OTP_VERIFIED_TOTAL = Counter(
    "otpgw_otp_verified_total", "OTP verification attempts", ["outcome"], registry=REGISTRY
)

OTP_PURGED_TOTAL = Counter(
    "otpgw_otp_purged_total", "Expired OTP records deleted by the sweep", registry=REGISTRY
)


class MetricsHelper:
    """Helper class for common metrics operations."""

    @staticmethod
    def record_transition(status: str) -> None:
        """
        Record a session status transition.

        Args:
            status: Target status value
        """
        SESSION_TRANSITIONS_TOTAL.labels(status=status).inc()

    @staticmethod
    def set_live_sessions(count: int) -> None:
        """
        Set the number of registry entries.

        Args:
            count: Live session count
        """
        SESSIONS_LIVE.set(count)

    @staticmethod
    def record_pairing_result(outcome: str) -> None:
        PAIRING_RESULTS_TOTAL.labels(outcome=outcome).inc()

    @staticmethod
    def record_cleanup_failure(stage: str) -> None:
        """
        Record a reclamation failure.

        Args:
            stage: Cleanup stage (row, shutdown, files)
        """
        CLEANUP_FAILURES_TOTAL.labels(stage=stage).inc()

    @staticmethod
    def record_health_reclaim(reason: str) -> None:
        HEALTH_RECLAIMS_TOTAL.labels(reason=reason).inc()

    @staticmethod
    def record_health_sweep(duration: float) -> None:
        HEALTH_SWEEP_DURATION.observe(duration)

    @staticmethod
    def record_otp_issued(delivered: bool) -> None:
        """
        Record an OTP issuance.

        Args:
            delivered: Whether the transport confirmed the send
        """
        status = MetricsStatus.SUCCESS if delivered else MetricsStatus.FAILED
        OTP_ISSUED_TOTAL.labels(status=status.value).inc()

    @staticmethod
    def record_otp_verified(outcome: str) -> None:
        """
        Record an OTP verification.

        Args:
            outcome: success, invalid or expired
        """
        OTP_VERIFIED_TOTAL.labels(outcome=outcome).inc()

    @staticmethod
    def record_otp_purged(count: int) -> None:
        if count:
            OTP_PURGED_TOTAL.inc(count)


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus exposition format
    """
    result: bytes = generate_latest(REGISTRY)
    return result


metrics_helper = MetricsHelper()
