"""Unit tests for OutputPathResolver (mp_nexus.framework.output).

Tests cover:
- Tool config file beats package.json namespace
- Static and dynamic (textual fallback) Taro config files
- package.json namespace and platform manifest sources
- Convention fallback per framework, target and mode
- Unreadable sources skipped
"""

from __future__ import annotations

from pathlib import Path

import pytest

from mp_nexus.framework.detector import FrameworkKind
from mp_nexus.framework.output import OutputPathResolver, OutputSource

VUE_CONFIG = """\
// uni-app build settings
module.exports = {
  transpileDependencies: ['uview-ui'],
  pluginOptions: {
    'uni-app': {
      outputDir: 'dist/custom',
    },
  },
}
"""

TARO_DYNAMIC_CONFIG = """\
const config = {
  projectName: 'demo',
  sourceRoot: 'src',
  outputRoot: `build/${process.env.TARO_ENV}`,
}

module.exports = function (merge) {
  if (process.env.NODE_ENV === 'development') {
    return merge({}, config, require('./dev'))
  }
  return merge({}, config, require('./prod'))
}
"""


@pytest.fixture
def resolver(logger) -> OutputPathResolver:
    return OutputPathResolver(platform="weapp", logger=logger)


# ---------------------------------------------------------------------------
# Tool config files
# ---------------------------------------------------------------------------


class TestToolConfig:
    @pytest.mark.unit
    def test_vue_config_beats_package_json(self, resolver, uni_project: Path, write_json):
        (uni_project / "vue.config.js").write_text(VUE_CONFIG)
        write_json(
            uni_project / "package.json",
            {"dependencies": {"@dcloudio/uni-app": "*"}, "uniApp": {"outputDir": "dist/other"}},
        )
        location = resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        assert location.path == (uni_project / "dist" / "custom").resolve()
        assert location.source is OutputSource.TOOL_CONFIG_FILE

    @pytest.mark.unit
    def test_vite_config(self, resolver, uni_project: Path):
        (uni_project / "vite.config.js").write_text("export default { build: { outDir: 'dist/vite' } }\n")
        location = resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        assert location.path == (uni_project / "dist" / "vite").resolve()

    @pytest.mark.unit
    def test_static_taro_config(self, resolver, taro_project: Path):
        (taro_project / "config").mkdir()
        (taro_project / "config" / "index.js").write_text("module.exports = { outputRoot: 'out' }\n")
        location = resolver.resolve(taro_project, "production", FrameworkKind.TARO)
        assert location.path == (taro_project / "out").resolve()
        assert location.source is OutputSource.TOOL_CONFIG_FILE

    @pytest.mark.unit
    @pytest.mark.parametrize("platform,target", [("weapp", "weapp"), ("alipay", "alipay")])
    def test_dynamic_taro_config_textual_fallback(self, logger, taro_project: Path, platform, target):
        (taro_project / "config").mkdir()
        (taro_project / "config" / "index.js").write_text(TARO_DYNAMIC_CONFIG)
        location = OutputPathResolver(platform=platform, logger=logger).resolve(
            taro_project, "production", FrameworkKind.TARO
        )
        assert location.path == (taro_project / "build" / target).resolve()
        assert location.source is OutputSource.TOOL_CONFIG_FILE

    @pytest.mark.unit
    def test_empty_value_ignored(self, resolver, taro_project: Path):
        (taro_project / "config").mkdir()
        (taro_project / "config" / "index.js").write_text("module.exports = { outputRoot: '' }\n")
        location = resolver.resolve(taro_project, "production", FrameworkKind.TARO)
        assert location.source is OutputSource.CONVENTION_FALLBACK

    @pytest.mark.unit
    def test_unreadable_config_skipped(self, resolver, taro_project: Path, write_json):
        (taro_project / "config").mkdir()
        (taro_project / "config" / "index.js").write_bytes(b"\xff\xfe\x00not utf-8")
        write_json(
            taro_project / "package.json",
            {"dependencies": {"@tarojs/taro": "*"}, "taro": {"outputRoot": "dist-taro"}},
        )
        location = resolver.resolve(taro_project, "production", FrameworkKind.TARO)
        assert location.path == (taro_project / "dist-taro").resolve()
        assert location.source is OutputSource.MANIFEST


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------


class TestManifests:
    @pytest.mark.unit
    def test_package_json_namespace(self, resolver, uni_project: Path, write_json):
        write_json(
            uni_project / "package.json",
            {"dependencies": {"@dcloudio/uni-app": "*"}, "uniApp": {"outputDir": "dist/other"}},
        )
        location = resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        assert location.path == (uni_project / "dist" / "other").resolve()
        assert location.source is OutputSource.MANIFEST

    @pytest.mark.unit
    def test_project_config_miniprogram_root(self, resolver, taro_project: Path, write_json):
        write_json(taro_project / "project.config.json", {"miniprogramRoot": "miniprogram/"})
        location = resolver.resolve(taro_project, "production", FrameworkKind.TARO)
        assert location.path == (taro_project / "miniprogram").resolve()
        assert location.source is OutputSource.MANIFEST

    @pytest.mark.unit
    def test_alipay_manifest(self, logger, taro_project: Path, write_json):
        write_json(taro_project / "project.config.json", {"miniprogramRoot": "wx"})
        write_json(taro_project / "mini.project.json", {"miniprogramRoot": "ali"})
        location = OutputPathResolver(platform="alipay", logger=logger).resolve(
            taro_project, "production", FrameworkKind.TARO
        )
        assert location.path == (taro_project / "ali").resolve()

    @pytest.mark.unit
    def test_broken_project_config_skipped(self, resolver, taro_project: Path):
        (taro_project / "project.config.json").write_text("{ nope")
        location = resolver.resolve(taro_project, "production", FrameworkKind.TARO)
        assert location.source is OutputSource.CONVENTION_FALLBACK


# ---------------------------------------------------------------------------
# Convention fallback
# ---------------------------------------------------------------------------


class TestConvention:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "framework,mode,expected",
        [
            (FrameworkKind.TARO, "production", "dist/weapp"),
            (FrameworkKind.TARO, "dev", "dist/weapp"),
            (FrameworkKind.UNI_APP, "production", "dist/build/mp-weixin"),
            (FrameworkKind.UNI_APP, "qa", "dist/build/mp-weixin"),
            (FrameworkKind.UNI_APP, "dev", "dist/dev/mp-weixin"),
            (FrameworkKind.UNKNOWN, None, "dist/weapp"),
        ],
    )
    def test_convention(self, resolver, tmp_project_dir: Path, framework, mode, expected):
        location = resolver.resolve(tmp_project_dir, mode, framework)
        assert location.path == (tmp_project_dir / expected).resolve()
        assert location.source is OutputSource.CONVENTION_FALLBACK

    @pytest.mark.unit
    def test_path_is_absolute_and_stable(self, resolver, uni_project: Path):
        first = resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        second = resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        assert first == second
        assert first.path.is_absolute()

    @pytest.mark.unit
    def test_resolve_has_no_side_effects(self, resolver, uni_project: Path):
        before = sorted(p.relative_to(uni_project) for p in uni_project.rglob("*"))
        resolver.resolve(uni_project, "production", FrameworkKind.UNI_APP)
        after = sorted(p.relative_to(uni_project) for p in uni_project.rglob("*"))
        assert before == after
