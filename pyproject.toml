[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cpusampler"
version = "0.1.0"
description = "A sampling CPU profiler that reports flame graphs and pprof profiles"
requires-python = ">=3.10"
dependencies = []
keywords = ["profiler", "sampling", "flamegraph", "pprof", "cpu", "performance"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Topic :: System :: Benchmark",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
cpusampler-demo = "cpusampler.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["cpusampler"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
