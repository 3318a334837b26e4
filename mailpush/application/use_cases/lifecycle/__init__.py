from mailpush.application.use_cases.lifecycle.device_lifecycle import (
    AppOpenedResult, DeviceLifecycleService, RenewalSummary)

__all__ = ["AppOpenedResult", "DeviceLifecycleService", "RenewalSummary"]
