"""Actionable error catalog for odoo-supervisor."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "launch_failed": {
        "what": "Could not launch `{command}`: {reason}",
        "next": "Check that ODOO_SOURCE points at an Odoo checkout containing `odoo-bin`.",
    },
    "config_not_found": {
        "what": "Config file not found: {path}",
        "next": "Start the container once so the configuration is generated, or set ERP_CONF_PATH.",
    },
    "addons_path_missing": {
        "what": "addons_path not found in {path}",
        "next": "Declare it with the `conf.addons_path` environment variable.",
    },
    "upgrade_locked": {
        "what": "Another upgrade run holds the lock at {path}.",
        "next": "Wait for the running upgrade to finish before starting a new one.",
    },
    "upgrade_failed": {
        "what": "Upgrade failed for: {databases}.",
        "next": "Inspect the logs under {run_dir} and run `odoo-supervisor upgrade` again.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
