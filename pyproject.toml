[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "msvlink"
version = "0.1.0"
description = "Named remote function calls carrying typed values and raw images over framed TCP"
requires-python = ">=3.10"
dependencies = [
    "pillow",
]
keywords = ["rpc", "tcp", "machine-vision", "images", "remote-procedure-call"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Object Brokering",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
msvlink-demo = "msvlink.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["msvlink"]

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
warn_redundant_casts = true
