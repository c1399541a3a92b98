# nodeproblem

`nodeproblem` holds the pieces needed to detect problems on a Kubernetes node
and report them as node conditions and events:

- `nodeproblem.rules` – the shared data types: `Condition`, `Event`, `Status`,
  `CustomRule`, `Result` and the enums `ProblemType`, `ConditionStatus`,
  `Severity` and `PluginStatus`.
- `nodeproblem.plugin_config` – loading, defaulting and validating a custom
  plugin monitor configuration.
- `nodeproblem.custom_plugin_monitor` – turning plugin results into condition
  changes, events and statuses.
- `nodeproblem.problem_client` – a client for the API server (conditions,
  events, node lookup) and an in-memory `FakeProblemClient`.
- `nodeproblem.condition_manager` – batches condition updates and keeps them in
  sync with the API server, with resync and heartbeat.
- `nodeproblem.k8s_exporter` – an exporter that sends events and conditions to
  the API server and serves `/healthz` and `/conditions` over HTTP.
- `nodeproblem.exporters` – a registry of pluggable exporters.
- `nodeproblem.stackdriver_config` – configuration of a Stackdriver metrics
  exporter and its GCE metadata.
- `nodeproblem.options`, `nodeproblem.health_options`,
  `nodeproblem.logcounter_options` – command line options of the detector, the
  health checker and the log counter.
- `nodeproblem.durations` – duration strings such as `"1m30s"` or `"250ms"`.

## Custom plugin configuration

A custom plugin monitor is configured with a JSON file:

```json
{
  "plugin": "custom",
  "pluginConfig": {
    "invoke_interval": "30s",
    "timeout": "5s",
    "max_output_length": 80,
    "concurrency": 3
  },
  "source": "health-monitor",
  "metricsReporting": true,
  "conditions": [
    {"type": "KubeletProblem", "reason": "KubeletIsUp", "message": "kubelet is up"}
  ],
  "rules": [
    {
      "type": "permanent",
      "condition": "KubeletProblem",
      "reason": "KubeletIsDown",
      "path": "/usr/local/bin/check-kubelet",
      "timeout": "3s"
    }
  ]
}
```

`CustomPluginConfig.apply_configuration()` fills missing settings with their
defaults: a `5s` global timeout, a `30s` invoke interval, 80 characters of
output, a concurrency of 3, metrics reporting on, message-change based
condition updates off and the initial status sent.

```python
from nodeproblem.plugin_config import ConfigError, load_config

try:
    config = load_config("/etc/node-problem-detector/custom-plugin.json")
except ConfigError as err:
    print(f"bad configuration: {err}")
```

`load_config` reads the file, applies the defaults and validates. `validate()`
raises `ConfigError` when the plugin is not `"custom"`, when a rule timeout
exceeds the global timeout, when a rule's plugin path does not exist, or when a
permanent rule has no matching default condition.

## Turning plugin results into node status

```python
from nodeproblem.custom_plugin_monitor import CustomPluginMonitor

monitor = CustomPluginMonitor.from_config_file("/etc/node-problem-detector/custom-plugin.json")

for status in monitor.process(results):
    for event in status.events:
        print(event.reason, event.message)
```

`results` is any iterable of `nodeproblem.rules.Result`. `process` resets the
conditions to the configured defaults (all `False`), yields the initial status
unless `skip_initial_status` is set, and then yields one status per result.
`generate_status(result)` handles a single result.

Exit status `PluginStatus.OK` maps to condition `False`, `NON_OK` to `True`,
anything else to `Unknown` (`to_condition_status`). A temporary rule only
produces a warning event when its status is `NON_OK` or worse; a permanent rule
updates its condition and produces an event when the status, the reason, or –
with message-change based updates on – the message changes.

To report problem metrics, pass an object with `set_problem_gauge(problem_type,
reason, value)` and `increment_problem_counter(reason, count)` as
`CustomPluginMonitor(config, path, metrics=...)`; it is used only when
`enable_metrics_reporting` is on.

## Talking to the API server

```python
from nodeproblem.problem_client import NodeProblemClient, get_kube_client_config

config = get_kube_client_config("https://api.example.com?inClusterConfig=false")
client = NodeProblemClient(config, node_name="node-1")
node = client.get_node()
```

The override URI takes the query options `inClusterConfig` (default true),
`insecure`, `auth` (path of a kubeconfig written as JSON) and
`useServiceAccount`. `set_conditions` patches the node status, retrying a few
times; `event` creates an Event object for the node.

`FakeProblemClient` keeps conditions in memory; `inject_error("set_conditions",
exc)` makes that method raise, and `assert_conditions(expected)` raises
`AssertionError` on a mismatch.

## Condition manager

```python
from datetime import timedelta

from nodeproblem.condition_manager import ConditionManager, RealClock
from nodeproblem.problem_client import FakeProblemClient

client = FakeProblemClient()
manager = ConditionManager(client, RealClock(), timedelta(minutes=5))
manager.start()
manager.update_condition(condition)
print(manager.get_conditions())
manager.stop()
```

Pending updates are checked every second; a failed sync is retried after a
10 second resync period, and all conditions are pushed again once per
heartbeat period.

## Kubernetes exporter

```python
from nodeproblem.k8s_exporter import new_exporter

exporter = new_exporter(options)          # None if options.enable_k8s_exporter is false
exporter.export_problems(status)
exporter.stop()
```

`new_exporter` builds a `NodeProblemClient` from `options.api_server_override`
unless a client is passed, waits up to `api_server_wait_timeout` for the node
object to be readable, starts the condition manager and, when
`options.server_port` is above 0, serves `/healthz` and `/conditions` on
`options.server_address`.

## Exporter registry

```python
from nodeproblem import exporters

exporters.register("my-exporter", exporters.ExporterHandler(create_exporter=factory))
print(exporters.get_exporter_names())
active = exporters.new_exporters()
```

`new_exporters` calls each factory with its handler's options and skips those
that return `None`. `get_exporter_handler` raises `ExporterNotFoundError` for a
name that was never registered; `clear()` empties the registry.

## Options

```python
import argparse

from nodeproblem.options import NodeProblemDetectorOptions

options = NodeProblemDetectorOptions.create(["custom-plugin-monitor", "system-log-monitor"])
parser = argparse.ArgumentParser()
options.add_arguments(parser)
parser.parse_args(["--config.custom-plugin-monitor", "a.json,b.json"], namespace=options)
options.set_node_name()
options.set_config_from_deprecated_options()
options.validate()
```

`set_node_name` uses `hostname_override`, then the `NODE_NAME` environment
variable, then the host name. `validate` raises `OptionsError` for an
unparsable API server override, leftover deprecated paths, or no monitor
configuration at all.

`HealthCheckerOptions.from_args(argv)` and `LogCounterOptions.from_args(argv)`
parse the health checker's and the log counter's flags;
`HealthCheckerOptions.validate()` raises `ValueError` and `set_defaults()`
derives the service from the component.

## Durations

```python
from nodeproblem.durations import format_duration, parse_duration

interval = parse_duration("1m30s")
print(format_duration(interval))   # 1m30s
```

## What this package does not do

- It does not run health-check plugins itself: plugin results are handed to
  `CustomPluginMonitor` by the caller.
- It installs no commands; the option classes parse arguments, but there is no
  detector, health checker or log counter program to run.
- There is no system log monitor, no system stats monitor and no Prometheus
  endpoint. For Stackdriver only the configuration is provided, not the
  exporter that sends metrics.