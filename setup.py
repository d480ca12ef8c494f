from setuptools import setup

setup(
    name="elgin",
    version="0.0.1",
    install_requires=['tree_sitter==0.23.1', 'tree-sitter-c==0.23.1'],
    extras_require={"test": ["pytest"]},
    packages=['elgin', 'elgin.lang'],
)
