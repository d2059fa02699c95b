import pytest

from calintel.config import load_config
from calintel.models import SyncResolution
from calintel.parsing import FallbackPolicy


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.yaml"))

    assert cfg.timezone == "UTC"
    assert cfg.input.min_length == 3
    assert cfg.input.max_length == 1000
    assert cfg.conflicts.travel_time_buffer_minutes == 15
    assert cfg.parser.strategy == "heuristic"
    assert cfg.parser.fallback is FallbackPolicy.ON_ERROR
    assert cfg.sync.strategy is SyncResolution.MERGE
    assert cfg.sync.lookahead_days == 30
    assert cfg.user_patterns.common_locations == ("Office", "Home", "Conference Room")
    assert cfg.logging.level == "INFO"


def test_empty_file_gives_defaults(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("", encoding="utf-8")

    assert load_config(str(p)).google.calendar_id == "primary"


def test_sections_override_defaults(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text(
        """
timezone: America/Phoenix
input:
  max_length: 500
conflicts:
  break_time_buffer_minutes: 5
travel:
  provider: osrm
  user_agent: my-agent
parser:
  strategy: model
  fallback: on_empty
  model: gpt-4o
  timeout_seconds: 12
user_patterns:
  preferred_times: ["08:30"]
  common_locations: [Studio]
  average_duration: 45
  working_hours:
    start: "08:00"
sync:
  strategy: local_wins
  source: icloud
  lookahead_days: 7
icloud:
  calendar_name: Work
logging:
  level: debug
""",
        encoding="utf-8",
    )

    cfg = load_config(str(p))

    assert cfg.timezone == "America/Phoenix"
    assert cfg.input.max_length == 500
    assert cfg.input.min_length == 3
    assert cfg.conflicts.break_time_buffer_minutes == 5
    assert cfg.travel.provider == "osrm"
    assert cfg.travel.user_agent == "my-agent"
    assert cfg.parser.strategy == "model"
    assert cfg.parser.fallback is FallbackPolicy.ON_EMPTY
    assert cfg.parser.timeout_seconds == 12.0
    assert cfg.user_patterns.preferred_times == ("08:30",)
    assert cfg.user_patterns.common_locations == ("Studio",)
    assert cfg.user_patterns.preferred_days[0] == "Monday"
    assert cfg.user_patterns.average_duration == 45
    assert cfg.user_patterns.working_hours.start == "08:00"
    assert cfg.user_patterns.working_hours.end == "17:00"
    assert cfg.sync.strategy is SyncResolution.LOCAL_WINS
    assert cfg.sync.source == "icloud"
    assert cfg.sync.lookahead_days == 7
    assert cfg.icloud.calendar_name == "Work"
    assert cfg.logging.level == "DEBUG"


@pytest.mark.parametrize(
    "snippet",
    [
        "parser:\n  strategy: psychic\n",
        "parser:\n  fallback: sometimes\n",
        "travel:\n  provider: carrier-pigeon\n",
        "sync:\n  strategy: coin_flip\n",
        "sync:\n  source: outlook\n",
    ],
)
def test_unknown_enum_values_raise(tmp_path, snippet):
    p = tmp_path / "config.yaml"
    p.write_text(snippet, encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(str(p))
