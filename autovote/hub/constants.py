"""Shared constants for hub components.

Setting keys are defined here to prevent implicit coupling between the
resolver, the decision engine and the scheduler, which all read the same
settings.
"""

# Setting keys, as persisted in the settings document
SETTING_EXPOSURE = "exposure"
SETTING_LAST_HOUR_EXPOSURE = "last_hour_exposure"
SETTING_USE_LAST_HOUR_EXPOSURE = "use_last_hour_exposure"
SETTING_LAST_MINUTE_THRESHOLD = "last_minute_threshold"
SETTING_ONLY_BOOST = "only_boost"
SETTING_VOTE_ONLY_IN_LAST_MINUTE = "vote_only_in_last_minute"
SETTING_LAST_MINUTE_CHECK_FREQUENCY = "last_minute_check_frequency"
SETTING_BOOST_TIME = "boost_time"
SETTING_CHECK_FREQUENCY = "check_frequency"

# Settings whose change invalidates an armed threshold watch or the cadence
SCHEDULING_KEYS = frozenset(
    {
        SETTING_LAST_MINUTE_THRESHOLD,
        SETTING_LAST_MINUTE_CHECK_FREQUENCY,
        SETTING_CHECK_FREQUENCY,
    }
)

# Table names
TABLE_SETTINGS_DOCUMENT = "settings_document"
TABLE_CONFIG_HISTORY = "config_history"

# Decision windows
LAST_HOUR_SECONDS = 3600
FULL_EXPOSURE = 100

# Scheduler timing
CONFIG_DEBOUNCE_SECONDS = 0.5
CONFIG_POLL_INTERVAL_SECONDS = 2.0

# Overrides of entities acted on within this window survive stale pruning
RECENT_TOUCH_WINDOW_SECONDS = 300
