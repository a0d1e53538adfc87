# cpusampler

A sampling CPU profiler that runs inside your program. It uses the
`SIGPROF` interval timer: each time the timer fires, the stack of the
interrupted Python code is recorded. When you are done, you build a report
from the samples. A report can be printed, written as folded stack lines,
drawn as an SVG flame graph, or turned into a profile in the pprof format.

The package uses only the standard library.

## Starting and stopping

Start profiling at a given sample frequency (samples per second):

```python
from cpusampler.profiler import start_profiling

guard = start_profiling(100)
# ... the code you want to measure ...
report = guard.report().build()
print(report)
guard.stop()
```

A guard is also a context manager. Leaving the `with` block stops the timer
and the profiler:

```python
from cpusampler.profiler import ProfilerGuardBuilder

with ProfilerGuardBuilder().frequency(1000).blocklist(["threading"]).build() as guard:
    run_workload()
    report = guard.report().build()
```

`ProfilerGuardBuilder` samples 99 times a second by default. `frequency()`
and `blocklist()` each return a new builder. `blocklist` takes strings. A
sample is skipped when the file of the frame that was interrupted contains
one of them. A frequency below 1 raises `ValueError`.

There is one shared `Profiler`, and only one can run at a time. Building a
second guard while one is running raises `RunningError`. Calling
`Profiler.stop()` on a profiler that is not running raises
`NotRunningError`. Both live in `cpusampler.errors` and subclass
`ProfilerError`. `ProfilerGuard.stop()` can be called more than once; every
call after the first does nothing. Stopping a profiler throws away the
samples it collected, so build your report before you stop.

## Reports

`guard.report()` returns a `ReportBuilder`. Before you build, you can set a
function that is called on each resolved stack (`Frames`). For example, it
can put every stack under one thread name:

```python
def rename(frames):
    frames.thread_name = "PROCESSED"

report = guard.report().frames_post_processor(rename).build()
```

`build()` returns a `Report`. Its `data` maps each `Frames` to the number
of times it was sampled. `build_unresolved()` returns an `UnresolvedReport`
with the raw `UnresolvedFrames` as keys. Both carry a `ReportTiming` with
the frequency, the start time and the duration.

`str(report)` gives one line for each distinct stack, leaf frame first:

```
FRAME: inner -> FRAME: outer -> THREAD: MainThread 42
```

`report.folded_lines()` gives the same data as folded stacks, root first
(`MainThread;outer;inner 42`). Other flame graph tools can read this form.

### Flame graphs

```python
from cpusampler.flamegraph import Options

with open("flamegraph.svg", "w", encoding="utf-8") as file:
    report.flamegraph(file, Options(title="My workload"))
```

The writer can be a text or binary file. An empty report writes nothing.
`Options` sets the title, subtitle, count name, image width, frame height,
font, minimum frame width, inverted layout, reversed stack order and
background colour. `cpusampler.flamegraph.from_lines(options, lines, writer)`
draws any folded lines. It skips lines it cannot parse and raises
`ValueError` when no samples are left.

### pprof profiles

```python
profile = report.pprof()
with open("profile.pb", "wb") as file:
    file.write(profile.encode())
```

The result is a `cpusampler.proto.Profile`. It has two sample types:
`samples/count`, and `cpu/nanoseconds` worked out from the frequency. Each
function gets one location. `Profile.decode(data)` reads an encoded profile
back.

## Demo

The package comes with a workload that counts prime numbers while it
profiles itself:

```
cpusampler-demo --frequency 100 --limit 5000000 --format flamegraph
```

Options:

- `--format` is `flamegraph`, `pprof` or `text`.
- `--output` sets the output file. The defaults are `flamegraph.svg` and `profile.pb`.
- `--threads` starts background worker threads.
- `--duration` keeps sampling for that many seconds after the count.
- `--thread-name` renames the thread of every stack in the report.
- `--blocklist` takes strings that work like `blocklist()` above.

## Limitations

- It needs `SIGPROF` and `signal.setitimer`, so it runs on POSIX systems only.
- It must be started from the main thread.
- Python runs signal handlers on the main thread. So every sample is a stack of the main thread, even when other threads use the CPU.
- Only Python frames are recorded. Native code shows up as the Python call that entered it.
- pprof profiles hold no mappings or addresses.