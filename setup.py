from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='pysonosdial',
    packages=['pysonosdial'],
    version=version,
    license='Apache 2.0',
    description='Control Sonos volume and mute from a rotary dial, stereo pairs and zone groups included',
    long_description=long_descr,
    long_description_content_type='text/markdown',    
    author='johnno',
    author_email='johnno@example.com',
    url='https://github.com/johnno/pysonosdial',
    download_url=f'https://github.com/johnno/pysonosdial/archive/{version}.tar.gz',
    keywords=['Sonos', 'UPnP', 'Volume', 'Dial'],
    python_requires='>=3.10',
    install_requires=[
        "aiohttp>=3.8.3",
        "xmltodict>=0.11.0"
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23",
            "aioresponses>=0.7.6",
            "aiohttp<3.14",  # aioresponses 0.7.x breaks on aiohttp 3.14 ClientResponse signature
        ]
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Multimedia :: Sound/Audio',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
