"""Tests for risky command detection."""

import pytest

from clix.security import check_command, is_dangerous


class TestCommandCheck:
    """Test destructive and production detection."""

    @pytest.mark.parametrize("command", [
        "rm -rf /tmp/build",
        "/bin/rm file.txt",
        "kubectl -n web delete pod api-1",
        "gcloud compute instances delete vm-1",
        "aws s3 rb s3://bucket --force",
        "aws ec2 terminate-instances --instance-ids i-1",
        "terraform destroy -auto-approve",
        "helm uninstall api",
        "docker system prune -a",
        "git push --force origin main",
        "git reset --hard HEAD~1",
        "psql -c 'DROP TABLE users'",
        "sudo systemctl restart nginx",
        "chmod 777 /srv",
        "mkfs.ext4 /dev/sdb1",
    ])
    def test_destructive(self, command):
        check = check_command(command)
        assert check.destructive, command
        assert check.requires_approval
        assert check.reasons

    @pytest.mark.parametrize("command", [
        "kubectl --context prod get pods",
        "deploy.sh --env=production",
        "echo PRD",
    ])
    def test_production(self, command):
        check = check_command(command)
        assert check.production
        assert is_dangerous(command)

    @pytest.mark.parametrize("command", [
        "ls -la",
        "kubectl get pods",
        "git push origin main",
        "echo product reproduce",
        "docker ps",
        "",
    ])
    def test_safe(self, command):
        assert not is_dangerous(command)

    def test_none_is_safe(self):
        assert not check_command(None).requires_approval
