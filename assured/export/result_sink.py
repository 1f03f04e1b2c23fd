import json
import os
import time

from assured.config.settings import ExportSettings
from assured.transport.http import SENSITIVE_HEADERS


def _redact(result: dict) -> dict:
    headers = result.get("headers") or {}
    result["headers"] = {k: (["***"] if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}
    result["items"] = [_redact(i) for i in result.get("items") or []]
    return result


class ResultSink:
    def build_report(self, scenario_name: str, history) -> dict:
        steps = []
        for executed in history:
            entry = _redact(executed.result.to_dict())
            entry["step"] = type(executed.step).__name__
            entry["target"] = getattr(executed.step, "url", None) or getattr(executed.step, "topic", None)
            steps.append(entry)
        return {
            "scenario": scenario_name,
            "created_at_ms": int(time.time() * 1000),
            "ok": all(s["success"] for s in steps),
            "steps": steps,
        }

    def write(self, scenario_name: str, history, export: ExportSettings) -> dict:
        report = self.build_report(scenario_name, history)
        if export.console is True:
            print(json.dumps(report, indent=2))

        path = export.json_path
        if path:
            # one report file per run; scenarios are appended as JSON lines
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(report) + "\n")
        return report
