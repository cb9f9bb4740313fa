[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hydrodose"
version = "0.1.0"
description = "Hydroponic nutrient dosing controller: proportional EC control, sequential relay dosing, pH/TDS sensor maths and a small Flask web interface."
requires-python = ">=3.10"
keywords = ["hydroponics", "ec", "ph", "tds", "dosing", "relay", "nutrients"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: Flask",
    "Topic :: Home Automation",
]
dependencies = [
    "flask",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
hydrodose-server = "hydrodose.webserver:main"

[tool.hatch.build.targets.wheel]
packages = ["hydrodose"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
