"""Config reader for lderp"""

import glob
import os
import os.path
import string

from addict import Dict
import yaml

from . import ConfigFileError


def substitute_environment(value, environ):
    """Replace ${VAR} references in every string of a loaded config

    :raises ConfigFileError: If a referenced variable isn't set
    """
    if isinstance(value, dict):
        return {
            key: substitute_environment(item, environ) for key, item in value.items()
        }
    if isinstance(value, list):
        return [substitute_environment(item, environ) for item in value]
    if not isinstance(value, str):
        return value
    try:
        return string.Template(value).substitute(environ)
    except KeyError as exc:
        raise ConfigFileError(
            f"The environment variable {exc} used in your config file wasn't provided!"
        ) from exc


class ConfigReader:
    """Reads a yaml file, or a folder of them, describing a directory

    A config names the adapter module and its settings::

        directory:
          module: EDirectory
          url: ldaps://edir.example.org
          zombie_password: ${ZOMBIE_PASSWORD}

    """

    def __init__(self, file, raw=False, environ=None):
        """Parse the specified file or folder into self.config

        :raises ConfigFileError: If nothing can be read or a file isn't valid yaml
        """
        self.config_raw = {}
        for current_file in self._config_files(file):
            with open(current_file, "r", encoding="utf-8") as config_file:
                try:
                    loaded = yaml.safe_load(config_file) or {}
                except yaml.YAMLError as exc:
                    raise ConfigFileError(
                        f"Config read failed when parsing {current_file}: {exc}"
                    ) from exc
            if not isinstance(loaded, dict):
                raise ConfigFileError(f"{current_file} doesn't hold a mapping")
            self.config_raw.update(loaded)

        if raw:
            self.config = Dict(self.config_raw)
        else:
            environ = os.environ if environ is None else environ
            self.config = Dict(substitute_environment(self.config_raw, environ))

    @staticmethod
    def _config_files(file):
        if os.path.isdir(file):
            return sorted(glob.glob(os.path.join(file, "*.yml")))
        if os.path.isfile(file):
            return [file]
        raise ConfigFileError(f"Specified config file couldn't be found! {file}!")

    def adapter_config(self, section="directory"):
        """Plain dict copy of a section, without the module name"""
        config = self.config[section].to_dict() if section in self.config else {}
        config.pop("module", None)
        return config

    def dump(self, raw=False):
        """The config as yaml, optionally without environment variables expanded"""
        config = self.config_raw if raw else self.config.to_dict()
        return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)
