from hypothesis import given, strategies as st

from energy_backend.core.config import _unique
from conftest import build_settings


@given(st.lists(st.one_of(st.none(), st.text(min_size=0, max_size=10)), max_size=20))
def test_unique_property(input_list):
    result = _unique(input_list)
    # All elements in result are non-empty strings
    assert all(isinstance(x, str) and x for x in result)
    # Result preserves order of first occurrence
    seen = set()
    expected = []
    for v in input_list:
        if v and v not in seen:
            seen.add(v)
            expected.append(v)
    assert result == expected
    # Result contains only unique values
    assert len(result) == len(set(result))


def test_default_topics_include_control_wildcard():
    config = build_settings()
    assert config.mqtt_topics == [
        "sparknova/powerdata",
        "sparknova/status",
        "sparknova/logs",
        "sparknova/control/+",
    ]
    assert config.control_topic("SN001") == "sparknova/control/SN001"
    assert config.mqtt_qos == 2


def test_additional_topics_are_split_and_deduplicated():
    config = build_settings(mqtt_additional_topics="extra/a, sparknova/status\nextra/b")
    assert config.mqtt_topics[-2:] == ["extra/a", "extra/b"]
    assert config.mqtt_topics.count("sparknova/status") == 1


def test_timezone_and_increment_mode():
    config = build_settings(usage_increment_mode=" Cumulative ")
    assert config.usage_increment_mode == "cumulative"
    assert config.tz.key == "Asia/Jakarta"
