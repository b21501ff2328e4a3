from setuptools import setup

setup(
    name="dissect.hivetree",
    packages=["dissect.hivetree", "dissect.hivetree.tools"],
    install_requires=[
        "dissect.cstruct>=3.0.dev,<4.0.dev",
        "dissect.util>=3.0.dev,<4.0.dev",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "dissect-hivetree=dissect.hivetree.tools.tree:main",
        ],
    },
)
