"""Docker CLI wrappers for containers, images and networks."""

import subprocess
from dataclasses import dataclass
from pathlib import Path


class DockerError(Exception):
    """Raised when a docker command fails or the daemon is unreachable."""


@dataclass
class ContainerInfo:
    id: str
    name: str
    state: str
    labels: dict[str, str]


def run_docker(args: list[str], timeout: float | None = None) -> str:
    """Run a docker command and return stdout. Raises DockerError on failure."""
    cmd = ["docker"] + args
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        return result.stdout.strip()
    except FileNotFoundError as e:
        raise DockerError("docker executable not found") from e
    except subprocess.CalledProcessError as e:
        raise DockerError(f"docker {args[0]} failed: {(e.stderr or '').strip()}") from e
    except subprocess.TimeoutExpired as e:
        raise DockerError(f"docker {args[0]} timed out after {timeout}s") from e


def check_daemon() -> str:
    """Return the server version. Raises DockerError if the daemon is down."""
    return run_docker(["info", "--format", "{{.ServerVersion}}"], timeout=30)


def _parse_labels(raw: str) -> dict[str, str]:
    labels = {}
    for pair in raw.split(","):
        if "=" in pair:
            key, value = pair.split("=", 1)
            labels[key] = value
    return labels


def list_containers(name_prefix: str = "", all_states: bool = True) -> list[ContainerInfo]:
    """List containers whose name starts with ``name_prefix``."""
    args = ["ps", "--format", "{{.ID}}\t{{.Names}}\t{{.State}}\t{{.Labels}}"]
    if all_states:
        args.append("-a")
    if name_prefix:
        args += ["--filter", f"name={name_prefix}"]

    containers = []
    for line in run_docker(args).splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        labels = _parse_labels(parts[3]) if len(parts) > 3 else {}
        info = ContainerInfo(id=parts[0], name=parts[1], state=parts[2], labels=labels)
        # The name filter matches substrings; keep true prefixes only.
        if info.name.startswith(name_prefix):
            containers.append(info)
    return containers


def get_container(name: str) -> ContainerInfo | None:
    for info in list_containers(name):
        if info.name == name:
            return info
    return None


def run_container(
    name: str,
    image: str,
    network: str | None = None,
    volumes: list[str] | None = None,
    env: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    ports: list[str] | None = None,
    workdir: str | None = None,
    command: list[str] | None = None,
) -> str:
    """Start a detached container. Returns the container ID."""
    args = ["run", "-d", "--name", name]
    if network:
        args += ["--network", network]
    for volume in volumes or []:
        args += ["-v", volume]
    for port in ports or []:
        args += ["-p", port]
    if workdir:
        args += ["-w", workdir]
    for key, value in (env or {}).items():
        args += ["-e", f"{key}={value}"]
    for key, value in (labels or {}).items():
        args += ["--label", f"{key}={value}"]
    args.append(image)
    args += command or []
    return run_docker(args)


def start_container(name: str) -> str:
    return run_docker(["start", name])


def remove_container(name: str, force: bool = True) -> str:
    args = ["rm"]
    if force:
        args.append("-f")
    args.append(name)
    return run_docker(args)


def network_exists(name: str) -> bool:
    output = run_docker(["network", "ls", "--filter", f"name=^{name}$", "--format", "{{.Name}}"])
    return name in output.splitlines()


def ensure_network(name: str) -> bool:
    """Create the network if missing. Returns True if it was created."""
    if network_exists(name):
        return False
    run_docker(["network", "create", name])
    return True


def image_exists(image: str) -> bool:
    return bool(run_docker(["images", "-q", image]))


def build_image(image: str, dockerfile: str | Path, context: str | Path) -> str:
    return run_docker(["build", "-f", str(dockerfile), "-t", image, str(context)])
