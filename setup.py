from setuptools import find_packages, setup

setup(
    name="looptune",
    version="0.1.0-alpha",
    description="Looptune - execution-driven beam search over loop-nest schedules",
    packages=find_packages(include=["looptune", "looptune.*"]),
    python_requires=">=3.10",
    install_requires=["numpy", "matplotlib", "networkx", "tabulate", "tqdm"],
    extras_require={"test": ["pytest"]},
)
