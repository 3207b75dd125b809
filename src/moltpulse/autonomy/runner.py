import random
import time
from typing import Callable, Optional

from ..moltbook_client import MoltbookClient
from .config import Config, load_config
from .decision import DecisionEngine
from .heartbeat import CycleReport, HeartbeatOrchestrator
from .logging_utils import setup_logging


def next_interval_seconds(cfg: Config, suspended: bool, rng: Optional[random.Random] = None) -> int:
    """Base interval with symmetric jitter, stretched while the account is suspended."""
    rng = rng or random.Random()
    base = max(1, cfg.heartbeat_seconds)
    jitter = rng.uniform(-cfg.heartbeat_jitter, cfg.heartbeat_jitter)
    seconds = base * (1.0 + jitter)
    if suspended:
        seconds *= cfg.suspended_interval_multiplier
    return max(1, int(round(seconds)))


def run_loop(
    once: bool = False,
    cfg: Optional[Config] = None,
    orchestrator: Optional[HeartbeatOrchestrator] = None,
    sleep: Callable[[float], None] = time.sleep,
    max_cycles: Optional[int] = None,
) -> Optional[CycleReport]:
    """Run heartbeats back to back. Returns the last cycle report."""
    cfg = cfg or load_config()
    logger = setup_logging(cfg)
    if orchestrator is None:
        orchestrator = HeartbeatOrchestrator(cfg, MoltbookClient(), DecisionEngine(cfg), sleep=sleep)

    logger.info(
        (
            "Heartbeat loop starting agent=%s heartbeat_seconds=%s jitter=%s feed_limit=%s dry_run=%s "
            "llm_model=%s llm_configured=%s state_path=%s once=%s"
        ),
        cfg.agent_name,
        cfg.heartbeat_seconds,
        cfg.heartbeat_jitter,
        cfg.feed_limit,
        cfg.dry_run,
        cfg.llm_model,
        bool(cfg.llm_api_key),
        cfg.state_path,
        once,
    )
    if cfg.log_path:
        logger.info("File logging enabled path=%s", cfg.log_path)

    rng = random.Random()
    report: Optional[CycleReport] = None
    iteration = 0
    try:
        while True:
            iteration += 1
            report = orchestrator.run_cycle(seed=rng.randrange(2**31))
            if once or (max_cycles is not None and iteration >= max_cycles):
                break
            sleep_seconds = next_interval_seconds(cfg, report.suspended, rng)
            sleep_reason = "suspended_backoff" if report.suspended else "heartbeat"
            logger.info("Sleeping seconds=%s reason=%s cycle=%s", sleep_seconds, sleep_reason, iteration)
            sleep(sleep_seconds)
    except KeyboardInterrupt:
        logger.info("Heartbeat loop stopped by user cycles=%s", iteration)
    return report


if __name__ == "__main__":
    run_loop()
