from sitecrew.services.permissions import can_manage_assignment, get_employee_for_user, is_admin, is_supervisor


def test_roles(factory):
    admin = factory.user("admin", roles=("admin",))
    boss = factory.user("boss", roles=("supervisor",))
    worker = factory.user("worker1")
    assert is_admin(admin) and is_supervisor(admin)
    assert is_supervisor(boss) and not is_admin(boss)
    assert not is_supervisor(worker)


def test_inactive_employee_is_not_resolved(db, factory):
    user = factory.user("leaver")
    employee = factory.employee(user)
    employee.status = "inactive"
    db.commit()
    assert get_employee_for_user(db, user) is None


def test_can_manage_assignment(db, factory):
    admin = factory.user("admin", roles=("admin",), with_employee=False)
    boss_user = factory.user("boss", roles=("supervisor",))
    boss = factory.employee(boss_user)
    other_user = factory.user("other", roles=("supervisor",))
    worker = factory.employee(factory.user("worker1", supervisor=boss))
    project = factory.project()
    assignment = factory.assignment(worker, project)

    assert can_manage_assignment(admin, None, assignment)
    assert can_manage_assignment(boss_user, boss, assignment)
    assert not can_manage_assignment(other_user, factory.employee(other_user), assignment)

    assignment.supervisor_id = factory.employee(other_user).id
    db.commit()
    assert can_manage_assignment(other_user, factory.employee(other_user), assignment)
