from pt.util.misc import (
    epoch_millis,
    from_epoch_millis,
    local_date,
    format_clock,
    format_full_timestamp,
    format_duration,
    format_quantity,
)
