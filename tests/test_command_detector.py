"""
tests/test_command_detector.py

Unit tests for the CommandDetector classification pipeline.
───────────────────────────────────────────────────────────
Covers every supported manager shape, version parsing per ecosystem,
command chaining, environment prefixes, wrappers, nested shells, exec-style
invocations and the negative cases that must stay unrecognised.

Run with:
    python -m pytest tests/test_command_detector.py -v
"""

import os
import shlex
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from interceptor.command_detector import MAX_SHELL_DEPTH, CommandDetector, classify, shell_script
from interceptor.ecosystems import detect_ecosystem, exec_script, extract_packages
from interceptor.models import NOT_RECOGNIZED, Ecosystem, NotRecognized, Packages, ParsedPackage

NPM = Ecosystem.NPM
PYPI = Ecosystem.PYPI
HOMEBREW = Ecosystem.HOMEBREW


def pkg(name, ecosystem, version=None):
    return ParsedPackage(name=name, version=version, ecosystem=ecosystem)


class DetectorTestCase(unittest.TestCase):

    def setUp(self):
        self.detector = CommandDetector()

    def assertDetects(self, command, *expected):
        self.assertEqual(self.detector.detect(command), list(expected), msg=command)

    def assertNotRecognized(self, command):
        self.assertIsNone(self.detector.detect(command), msg=command)


# ─────────────────────────────────────────────────────────────────────────────
# Test: basic manager shapes
# ─────────────────────────────────────────────────────────────────────────────

class TestBasicCommands(DetectorTestCase):

    def test_every_install_shape_without_version(self):
        cases = [
            ("npm install", NPM), ("npm i", NPM), ("npm add", NPM),
            ("pnpm install", NPM), ("pnpm i", NPM), ("pnpm add", NPM),
            ("yarn add", NPM), ("yarn install", NPM), ("yarn i", NPM),
            ("bun add", NPM), ("bun install", NPM), ("bun i", NPM),
            ("pip install", PYPI), ("pip3 install", PYPI), ("pipx install", PYPI),
            ("uv pip install", PYPI), ("poetry add", PYPI),
            ("python -m pip install", PYPI), ("python3 -m pip install", PYPI),
            ("brew install", HOMEBREW), ("brew reinstall", HOMEBREW),
            ("brew upgrade", HOMEBREW),
        ]
        for prefix, ecosystem in cases:
            with self.subTest(prefix=prefix):
                self.assertDetects(f"{prefix} somepkg", pkg("somepkg", ecosystem))

    def test_path_qualified_programs(self):
        self.assertDetects("/usr/local/bin/npm install x", pkg("x", NPM))
        self.assertDetects("/usr/bin/python3 -m pip install y", pkg("y", PYPI))

    def test_versioned_interpreter_names(self):
        self.assertDetects("python3.12 -m pip install y", pkg("y", PYPI))
        self.assertDetects("pip3.11 install y", pkg("y", PYPI))

    def test_global_flags_before_subcommand(self):
        self.assertDetects("pip -q install y", pkg("y", PYPI))
        self.assertDetects("python -u -m pip install y", pkg("y", PYPI))
        self.assertDetects("npm -g install x", pkg("x", NPM))

    def test_global_value_flags_before_subcommand(self):
        self.assertDetects("npm --prefix ./app install evil", pkg("evil", NPM))
        self.assertDetects("npm --registry https://r.example install evil", pkg("evil", NPM))
        self.assertDetects("npm --userconfig ~/.npmrc --cache /tmp/c i evil", pkg("evil", NPM))
        self.assertDetects("pip --proxy http://p:8080 install evil", pkg("evil", PYPI))
        self.assertDetects("pip --log /tmp/pip.log --cache-dir /tmp/c install evil",
                           pkg("evil", PYPI))
        self.assertDetects("python -W ignore -m pip install evil", pkg("evil", PYPI))
        self.assertDetects("pnpm -C packages/web add evil", pkg("evil", NPM))
        self.assertDetects("yarn --cwd web add evil", pkg("evil", NPM))
        self.assertDetects("npm --prefix ./app exec evil-cli", pkg("evil-cli", NPM))

    def test_workspace_flags_per_manager(self):
        # pnpm -w and yarn -W are boolean; npm -w names a workspace
        self.assertDetects("pnpm add -w evil", pkg("evil", NPM))
        self.assertDetects("pnpm -w add evil", pkg("evil", NPM))
        self.assertDetects("yarn add -W evil", pkg("evil", NPM))
        self.assertDetects("npm install -w packages/web evil", pkg("evil", NPM))
        self.assertDetects("bun add -d evil", pkg("evil", NPM))

    def test_poetry_group_flag(self):
        self.assertDetects("poetry add -G dev evil", pkg("evil", PYPI))
        self.assertDetects("poetry add --group dev -E socks evil", pkg("evil", PYPI))

    def test_yarn_global_add(self):
        self.assertDetects("yarn global add x", pkg("x", NPM))

    def test_uv_supplements(self):
        self.assertDetects("uv add httpx", pkg("httpx", PYPI))
        self.assertDetects("uv tool install ruff", pkg("ruff", PYPI))


# ─────────────────────────────────────────────────────────────────────────────
# Test: versions and package syntax
# ─────────────────────────────────────────────────────────────────────────────

class TestVersionedPackages(DetectorTestCase):

    def test_npm_version(self):
        self.assertDetects("npm install lodash@4.17.21", pkg("lodash", NPM, "4.17.21"))

    def test_pip_version(self):
        self.assertDetects("pip install requests==2.28.0", pkg("requests", PYPI, "2.28.0"))

    def test_scoped_with_version(self):
        self.assertDetects("npm install @types/node@20.0.0", pkg("@types/node", NPM, "20.0.0"))

    def test_scoped_without_version(self):
        self.assertDetects("npm install @types/node", pkg("@types/node", NPM))

    def test_pip_extras(self):
        self.assertDetects("pip install requests[security]", pkg("requests", PYPI))
        self.assertDetects("pip install 'requests[security]==2.0'", pkg("requests", PYPI, "2.0"))

    def test_pip_range_specifier_has_no_version(self):
        self.assertDetects("pip install 'requests>=2.0'", pkg("requests", PYPI))

    def test_brew_versioned_formula(self):
        self.assertDetects("brew install node@18", pkg("node", HOMEBREW, "18"))

    def test_brew_cask(self):
        self.assertDetects("brew install --cask firefox", pkg("firefox", HOMEBREW))

    def test_idempotent_on_textual_reconstruction(self):
        for command in ("npm install lodash@4.17.21", "pip install requests==2.28.0",
                        "brew install wget@1.21"):
            with self.subTest(command=command):
                first = self.detector.detect(command)[0]
                manager = {NPM: "npm", PYPI: "pip", HOMEBREW: "brew"}[first.ecosystem]
                again = self.detector.detect(f"{manager} install {first.spec()}")
                self.assertEqual(again, [first])


class TestExtractPackages(unittest.TestCase):

    def test_skips_flags_and_local_paths(self):
        packages = extract_packages(["-D", "./local", "/abs/pkg", ".", "real"], NPM)
        self.assertEqual(packages, [pkg("real", NPM)])

    def test_order_preserved(self):
        packages = extract_packages(["b", "a", "c@1"], NPM)
        self.assertEqual([p.name for p in packages], ["b", "a", "c"])

    def test_pypi_triple_equals(self):
        self.assertEqual(extract_packages(["pkg===1.0"], PYPI), [pkg("pkg", PYPI, "1.0")])

    def test_trailing_at_has_no_version(self):
        self.assertEqual(extract_packages(["lodash@"], NPM), [pkg("lodash", NPM)])


# ─────────────────────────────────────────────────────────────────────────────
# Test: bypass attempts
# ─────────────────────────────────────────────────────────────────────────────

class TestChaining(DetectorTestCase):

    def test_after_cd(self):
        self.assertDetects("cd /tmp && npm install malicious", pkg("malicious", NPM))

    def test_after_semicolon(self):
        self.assertDetects("echo hi; pip install evil", pkg("evil", PYPI))

    def test_after_or(self):
        self.assertDetects("false || npm install x", pkg("x", NPM))

    def test_in_pipe(self):
        self.assertDetects("echo test | npm install compromised", pkg("compromised", NPM))

    def test_multiple_installs_in_order(self):
        self.assertDetects(
            "npm install a b && pip install c && brew install d",
            pkg("a", NPM), pkg("b", NPM), pkg("c", PYPI), pkg("d", HOMEBREW),
        )

    def test_background_operator(self):
        self.assertDetects("sleep 1 & npm install x", pkg("x", NPM))

    def test_process_substitution(self):
        self.assertDetects("diff <(npm install evil) x", pkg("evil", NPM))
        self.assertDetects("cat >(pip install evil)", pkg("evil", PYPI))


class TestEnvPrefixes(DetectorTestCase):

    def test_node_env(self):
        self.assertDetects("NODE_ENV=production npm install x", pkg("x", NPM))

    def test_multiple_env_vars(self):
        self.assertDetects("NODE_ENV=production CI=true npm install x", pkg("x", NPM))


class TestWrappers(DetectorTestCase):

    def test_sudo_env_equivalent_to_plain(self):
        self.assertEqual(
            self.detector.detect("sudo env npm install malicious"),
            self.detector.detect("npm install malicious"),
        )

    def test_sudo_user(self):
        self.assertDetects("sudo -u root pip install evil", pkg("evil", PYPI))

    def test_timeout_and_nice(self):
        self.assertDetects("timeout 30 npm install x", pkg("x", NPM))
        self.assertDetects("nice -n 10 pip install y", pkg("y", PYPI))

    def test_eval(self):
        self.assertDetects('eval "sudo npm install x"', pkg("x", NPM))

    def test_eval_chain(self):
        self.assertDetects('eval "cd /tmp && npm install x"', pkg("x", NPM))

    def test_env_prefix_after_wrapper(self):
        self.assertDetects("sudo CI=1 npm install x", pkg("x", NPM))


class TestNestedShells(DetectorTestCase):

    def test_bash_c(self):
        self.assertDetects('bash -c "npm install hidden"', pkg("hidden", NPM))

    def test_sh_c(self):
        self.assertDetects("sh -c 'pip install hidden'", pkg("hidden", PYPI))

    def test_full_path_shell(self):
        self.assertDetects('/usr/bin/bash -c "npm install hidden"', pkg("hidden", NPM))

    def test_combined_flags(self):
        self.assertDetects('bash -lc "npm install hidden"', pkg("hidden", NPM))

    def test_shell_option_with_value(self):
        self.assertDetects('bash -o pipefail -c "npm install hidden"', pkg("hidden", NPM))

    def test_chain_inside_shell(self):
        self.assertDetects(
            "sh -c 'cd /x && npm i a; pip install b'",
            pkg("a", NPM), pkg("b", PYPI),
        )

    def test_wrapped_shell(self):
        self.assertDetects('sudo bash -c "sudo npm install x"', pkg("x", NPM))

    def test_shell_script_file_is_not_resolved(self):
        self.assertIsNone(shell_script(["bash", "install.sh"]))
        self.assertNotRecognized("bash install.sh")

    def test_depth_within_cap_resolves(self):
        command = "npm install deep"
        for _ in range(MAX_SHELL_DEPTH):
            command = "bash -c " + shlex.quote(command)
        self.assertDetects(command, pkg("deep", NPM))

    def test_depth_beyond_cap_terminates(self):
        command = "npm install deep"
        for _ in range(MAX_SHELL_DEPTH + 1):
            command = "bash -c " + shlex.quote(command)
        result = self.detector.classify(command)
        self.assertIsInstance(result, NotRecognized)
        self.assertTrue(result.depth_exhausted)

    def test_pathological_depth_terminates(self):
        command = "npm install deep"
        for _ in range(8):
            command = "sh -c " + shlex.quote(command)
        self.assertNotRecognized(command)

    def test_custom_depth(self):
        detector = CommandDetector(max_depth=1)
        self.assertEqual(detector.detect('bash -c "npm i x"'), [pkg("x", NPM)])
        self.assertIsNone(detector.detect("""bash -c "bash -c 'npm i x'" """))


class TestExecStyle(DetectorTestCase):

    def test_npx_target_is_package(self):
        self.assertDetects("npx malicious-package", pkg("malicious-package", NPM))

    def test_npx_local_path(self):
        self.assertNotRecognized("npx ./local-script.js")
        self.assertNotRecognized("npx /opt/tool.js")

    def test_npx_package_flags(self):
        self.assertDetects(
            "npx -p pkg1 -p pkg2 tool",
            pkg("pkg1", NPM), pkg("pkg2", NPM), pkg("tool", NPM),
        )

    def test_npx_long_package_flags(self):
        self.assertDetects(
            "npx --package pkg1 --package=pkg2@1.0 tool --flag value",
            pkg("pkg1", NPM), pkg("pkg2", NPM, "1.0"), pkg("tool", NPM),
        )

    def test_npx_yes_flag(self):
        self.assertDetects("npx --yes create-react-app@5.0.1 my-app",
                           pkg("create-react-app", NPM, "5.0.1"))

    def test_bunx(self):
        self.assertDetects("bunx cowsay", pkg("cowsay", NPM))

    def test_npm_exec(self):
        self.assertDetects("npm exec -- some-tool", pkg("some-tool", NPM))

    def test_pnpm_dlx(self):
        self.assertDetects("pnpm dlx tool", pkg("tool", NPM))

    def test_uvx_from(self):
        self.assertDetects("uvx --from httpie http", pkg("httpie", PYPI), pkg("http", PYPI))

    def test_npx_call_script_is_resolved(self):
        self.assertDetects("npx -c 'npm install evil'", pkg("evil", NPM))
        self.assertDetects("npx --call='pip install evil'", pkg("evil", PYPI))
        self.assertDetects("npm exec -c 'npm i evil && echo ok'", pkg("evil", NPM))

    def test_npx_call_keeps_package_flags(self):
        self.assertDetects(
            "npx -p cowsay -c 'cowsay hi && npm i evil'",
            pkg("cowsay", NPM), pkg("evil", NPM),
        )

    def test_npx_call_without_install(self):
        self.assertNotRecognized("npx -c 'echo hello'")

    def test_pnpm_dlx_shell_mode(self):
        self.assertDetects("pnpm dlx -c 'npm install evil'", pkg("evil", NPM))
        self.assertNotRecognized("pnpm dlx -c 'echo hi | cat'")

    def test_npx_call_counts_toward_depth(self):
        detector = CommandDetector(max_depth=0)
        result = detector.classify("npx -c 'npm install evil'")
        self.assertIsInstance(result, NotRecognized)
        self.assertTrue(result.depth_exhausted)

    def test_whitespace_never_part_of_npm_name(self):
        self.assertEqual(
            extract_packages(["npm install evil", "ok"], NPM),
            [pkg("ok", NPM)],
        )


# ─────────────────────────────────────────────────────────────────────────────
# Test: negative cases
# ─────────────────────────────────────────────────────────────────────────────

class TestNotRecognized(DetectorTestCase):

    def test_non_install_commands(self):
        for command in ("npm test", "git clone repo", "ls -la", "npm run build",
                        "pip list", "brew update", "python3 script.py"):
            with self.subTest(command=command):
                self.assertNotRecognized(command)

    def test_empty(self):
        self.assertNotRecognized("")
        self.assertNotRecognized("   ")

    def test_bare_install(self):
        self.assertNotRecognized("npm install")
        self.assertNotRecognized("pip install -r requirements.txt")
        self.assertNotRecognized("npm install -D")

    def test_bare_link(self):
        self.assertNotRecognized("npm link")
        self.assertNotRecognized("yarn link")

    def test_link_with_package(self):
        self.assertDetects("npm link some-pkg", pkg("some-pkg", NPM))
        self.assertDetects("bun link other", pkg("other", NPM))

    def test_local_paths(self):
        self.assertNotRecognized("pip install .")
        self.assertNotRecognized("npm install ./packages/foo")

    def test_value_flags_are_not_packages(self):
        self.assertDetects("pip install -i https://mirror/simple requests",
                           pkg("requests", PYPI))
        self.assertDetects("npm install --registry https://r.example x", pkg("x", NPM))

    def test_classification_values(self):
        self.assertIs(classify("npm test"), NOT_RECOGNIZED)
        result = classify("npm install a")
        self.assertIsInstance(result, Packages)
        self.assertEqual(result.packages, (pkg("a", NPM),))

    def test_malformed_quoting_does_not_raise(self):
        self.assertNotRecognized('npm install "unterminated')
        self.assertDetects('npm install x; echo "unterminated', pkg("x", NPM))


class TestDetectEcosystem(unittest.TestCase):

    def test_returns_raw_package_args(self):
        self.assertEqual(detect_ecosystem(["npm", "install", "-D", "a"]), (NPM, ["-D", "a"]))

    def test_unknown_program(self):
        self.assertIsNone(detect_ecosystem(["cargo", "add", "serde"]))
        self.assertIsNone(detect_ecosystem([]))

    def test_exec_script(self):
        self.assertEqual(exec_script(["npx", "-p", "a", "-c", "a --help"]), "a --help")
        self.assertEqual(exec_script(["pnpm", "dlx", "--shell-mode", "echo hi"]), "echo hi")
        self.assertIsNone(exec_script(["npx", "cowsay", "-c", "x"]))
        self.assertIsNone(exec_script(["npm", "install", "-c", "x"]))
        self.assertIsNone(exec_script(["bash", "-c", "npm i x"]))


if __name__ == "__main__":
    unittest.main()
