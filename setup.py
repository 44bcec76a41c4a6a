# This should be only one line. If it must be multi-line, indent the second
# line onwards to keep the PKG-INFO file format intact.
"""Edit KMS envelope-encrypted secrets in YAML manifests without losing \
comments or formatting.
"""

from setuptools import find_packages, setup

version = open("src/secretedit/version.txt").read().strip()

setup(
    name="secretedit",
    version=version,
    install_requires=[
        "boto3",
        "botocore",
        "PyNaCl",
        "py",
        "pyyaml", ],
    extras_require={
        "test": [
            "mock",
            "pytest", ]},
    entry_points="""
        [console_scripts]
            secretedit = secretedit.main:main
    """,
    license="Apache License 2.0",
    keywords="secrets kms yaml kubernetes",
    classifiers="""\
License :: OSI Approved :: Apache Software License
Programming Language :: Python
Programming Language :: Python :: 3
Programming Language :: Python :: 3 :: Only
"""[:-1].split("\n"),
    description=__doc__.strip(),
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages("src"),
    package_dir={"": "src"},
    package_data={"secretedit": ["version.txt"]},
    include_package_data=True,
    zip_safe=False,
    test_suite="secretedit.tests",
    python_requires=">=3.8")
