"""
Command queue and the commands it runs.
"""

from playbench.commands.actions import (
    AdvanceClock,
    Blur,
    Capture,
    Click,
    Command,
    Expect,
    FreezeClock,
    Intercept,
    InvokeValue,
    ReadFile,
    Reload,
    Request,
    Select,
    SetChecked,
    Target,
    Type,
    UnfreezeClock,
    Upload,
    Visit,
    WaitFor,
)
from playbench.commands.queue import CommandQueue, StepResult, StepStatus

__all__ = [
    "AdvanceClock",
    "Blur",
    "Capture",
    "Click",
    "Command",
    "CommandQueue",
    "Expect",
    "FreezeClock",
    "Intercept",
    "InvokeValue",
    "ReadFile",
    "Reload",
    "Request",
    "Select",
    "SetChecked",
    "StepResult",
    "StepStatus",
    "Target",
    "Type",
    "UnfreezeClock",
    "Upload",
    "Visit",
    "WaitFor",
]
