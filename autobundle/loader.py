"""Runtime loader shim emitted once per build.

The shim installs a single loader object under a reserved global name.
Application code asks it for a specifier:

- ``require(spec)``: synchronous; works for eagerly bundled dependencies
- ``importAsync(spec)``: returns a Promise; loads the lazy chunk if needed
- anything else is a runtime error naming the specifier

Evaluating the shim twice keeps the first loader.
"""

from __future__ import annotations

import json
from typing import Mapping

from .config import LOADER_PROTOCOL

_SHIM = """\
(function (root) {
  var PROTOCOL = %(protocol)s;
  if (root[PROTOCOL]) {
    return root[PROTOCOL];
  }
  var factories = Object.create(null);
  var modules = Object.create(null);
  var chunks = Object.create(null);
  var pending = Object.create(null);

  function define(specifier, factory) {
    if (!(specifier in factories)) {
      factories[specifier] = factory;
    }
  }

  function has(specifier) {
    return specifier in factories || specifier in chunks;
  }

  function require(specifier) {
    var module = modules[specifier];
    if (module) {
      return module.exports;
    }
    if (specifier in factories) {
      module = modules[specifier] = { exports: {} };
      factories[specifier].call(module.exports, module, module.exports, require);
      return module.exports;
    }
    if (specifier in chunks) {
      throw new Error("autobundle: '" + specifier + "' is loaded lazily; use importAsync()");
    }
    throw new Error("autobundle: could not find module '" + specifier + "'");
  }

  function loadChunk(url) {
    if (!pending[url]) {
      pending[url] = new Promise(function (resolve, reject) {
        var script = document.createElement("script");
        script.src = url;
        script.async = true;
        script.onload = function () { resolve(); };
        script.onerror = function () {
          delete pending[url];
          reject(new Error("autobundle: failed to load chunk " + url));
        };
        document.head.appendChild(script);
      });
    }
    return pending[url];
  }

  function importAsync(specifier) {
    if (specifier in factories) {
      return Promise.resolve().then(function () { return require(specifier); });
    }
    if (specifier in chunks) {
      return loadChunk(chunks[specifier]).then(function () { return require(specifier); });
    }
    return Promise.reject(new Error("autobundle: could not find module '" + specifier + "'"));
  }

  function registerChunks(map) {
    for (var specifier in map) {
      if (!(specifier in chunks)) {
        chunks[specifier] = map[specifier];
      }
    }
  }

  root[PROTOCOL] = {
    define: define,
    has: has,
    require: require,
    importAsync: importAsync,
    chunks: registerChunks
  };
  return root[PROTOCOL];
})(typeof globalThis !== "undefined" ? globalThis : this);
"""


def loader_shim() -> str:
    return _SHIM % {"protocol": json.dumps(LOADER_PROTOCOL)}


def chunk_registration(chunk_urls: Mapping[str, str]) -> str:
    """Statement telling the loader where each lazy specifier lives."""
    ordered = {spec: chunk_urls[spec] for spec in sorted(chunk_urls)}
    return (
        f"globalThis[{json.dumps(LOADER_PROTOCOL)}].chunks("
        f"{json.dumps(ordered, indent=2, sort_keys=True)});\n"
    )
