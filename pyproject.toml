[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "offsetalloc"
version = "0.1.0"
description = "Constant-time offset allocator for sub-allocating a linear range, such as a GPU buffer, using two-level bitfield bins."
requires-python = ">=3.10"
dependencies = []
keywords = ["allocator", "offset", "tlsf", "gpu", "memory", "sub-allocation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["offsetalloc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
