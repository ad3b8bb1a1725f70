import logging
import signal
from datetime import timedelta
from threading import Event

from alarms.intent_router import IntentRouter
from alarms.manager import AlarmManager
from alarms.missions import MissionBoard
from alarms.notifications import LocalNotificationCenter
from alarms.sounds import AlarmSoundPlayer
from alarms.storage import AlarmStore
from audio_io import OutputFactory
from config import Config, load_config, setup_logging
from time_utils import format_tz_offset, now_in_tz, resolve_timezone

logger = logging.getLogger("wake_force")


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


class WakeForceRuntime:
    def __init__(self, config: Config):
        self.config = config
        self.stop_event = Event()
        self.tzinfo = resolve_timezone(config.timezone_name)

        self.output_factory = OutputFactory(config.output_device_index)
        self.notifier = LocalNotificationCenter(
            check_interval=config.notify_check_interval_ms / 1000.0,
            clock=lambda: now_in_tz(self.tzinfo),
            permission_granted="notifications" in config.granted_permissions,
        )
        self.sound_player = AlarmSoundPlayer(
            config.sounds_dir,
            self.output_factory,
            default_sound=config.default_sound,
            power_up_seconds=config.power_up_sec,
        )
        self.mission_board = MissionBoard(granted_permissions=config.granted_permissions)
        self.alarm_manager = AlarmManager(
            store=AlarmStore(config.alarms_path),
            notifier=self.notifier,
            sound_player=self.sound_player,
            mission_gate=self.mission_board,
            poll_interval=config.poll_interval_sec,
            late_tolerance=timedelta(minutes=config.late_tolerance_min),
            defaults={
                "snooze_duration_minutes": config.default_snooze_min,
                "max_snoozes": config.default_max_snoozes,
                "volume": config.default_volume,
                "sound_name": config.default_sound,
            },
            on_alarm_triggered=self._on_alarm_triggered,
            timezone=self.tzinfo,
        )
        self.intent_router = IntentRouter(self.alarm_manager)

    def start(self) -> None:
        self.alarm_manager.start()
        self.notifier.start()

    def shutdown(self) -> None:
        self.stop_event.set()
        self.notifier.shutdown()
        self.alarm_manager.shutdown()
        self.output_factory.terminate()

    def handle_line(self, line: str) -> None:
        result = self.intent_router.handle_text(line, now=now_in_tz(self.tzinfo))
        if result and result.response_text:
            print(result.response_text, flush=True)

    def _on_alarm_triggered(self, alarm) -> None:
        label = alarm.label or "Alarm"
        print(f"\n*** {label} ({alarm.time}) is ringing: 'stop' or 'snooze' ***", flush=True)


def main() -> None:
    config = load_config()
    setup_logging("DEBUG" if config.debug else config.log_level)
    signal.signal(signal.SIGINT, graceful_exit)
    logger.info("Starting Wake Force (storage=%s)", config.alarms_path)

    runtime = WakeForceRuntime(config)
    logger.info("Using timezone offset %s", format_tz_offset(runtime.tzinfo))
    runtime.start()
    try:
        while not runtime.stop_event.is_set():
            try:
                line = input("> ")
            except EOFError:
                break
            if line.strip().lower() in {"quit", "exit"}:
                break
            runtime.handle_line(line)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
